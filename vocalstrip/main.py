import logging
import sys
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from vocalstrip.config import Settings
from vocalstrip.engine import InstrumentalEngine, error_response
from vocalstrip.exceptions import ClientInputError, ProcessingError
from vocalstrip.models import ErrorResponse, ProcessResponse, parse_request
from vocalstrip.storage import STATIC_PREFIX

logger = logging.getLogger("vocalstrip")

OUT_CACHE_CONTROL = "public, max-age=3600"


def configure_logging(level: str) -> None:
    """Attach a stdout handler to the ``vocalstrip`` logger tree."""

    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)


class CachedStaticFiles(StaticFiles):
    """StaticFiles that lets clients cache published results for an hour."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        if response.status_code == 200:
            response.headers["Cache-Control"] = OUT_CACHE_CONTROL
        return response


def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(exclude_none=True))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = InstrumentalEngine(settings)

    app = FastAPI(title="vocalstrip")
    app.state.settings = settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount(f"/{STATIC_PREFIX}", CachedStaticFiles(directory=str(settings.out_dir)), name=STATIC_PREFIX)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        """Keep form validation failures in the ``{ok, error}`` shape.

        A ``file`` field sent as plain text counts as a missing upload; any
        other bad field is reported as ``Invalid <field>``.
        """

        errors = exc.errors()
        fields = [tuple(err.get("loc", ()))[1:] for err in errors]
        if any(loc[:1] == ("file",) for loc in fields):
            return _json(ErrorResponse(error="No file"), status_code=400)
        name = ".".join(str(part) for part in fields[0]) if fields and fields[0] else ""
        return _json(ErrorResponse(error=f"Invalid {name}" if name else "Invalid request"), status_code=400)

    @app.get("/health")
    async def health():
        """Static liveness payload; does not touch ffmpeg or demucs."""

        return {"ok": True}

    @app.post("/process")
    async def process(
        request: Request,
        file: Optional[UploadFile] = File(default=None),
        engine_name: Optional[str] = Form(default=None, alias="engine"),
        model: Optional[str] = Form(default=None),
        keep_bass: Optional[str] = Form(default=None, alias="keepBass"),
        aggression: Optional[str] = Form(default=None),
    ):
        """Strip vocals from the uploaded file.

        ``engine=ffmpeg`` (default) runs the phase-cancellation filter in a
        single ffmpeg pass; ``engine=demucs`` normalises the upload, runs the
        separator and re-encodes the accompaniment stem. Either way the
        response carries exactly one of ``downloadUrl`` or ``error``.
        """

        if file is None or not file.filename:
            return _json(ErrorResponse(error="No file"), status_code=400)

        try:
            parsed = parse_request(
                file.file,
                file.filename,
                engine=engine_name,
                model=model,
                keep_bass=keep_bass,
                aggression=aggression,
            )
            url = await engine.process(parsed, request_base_url=str(request.base_url))
        except ClientInputError as exc:
            return _json(ErrorResponse(error=exc.error), status_code=exc.status_code)
        except ProcessingError as exc:
            logger.error("[process] %s (exit=%s) for %r", exc.error, exc.exit_code, file.filename)
            return _json(error_response(exc, settings.response_log_chars), status_code=exc.status_code)
        except Exception as exc:  # pragma: no cover - last-resort mapping
            logger.exception("[process] unexpected failure for %r", file.filename)
            return _json(ErrorResponse(error=str(exc) or exc.__class__.__name__), status_code=500)
        finally:
            # Release the spooled upload as soon as the request is done with it.
            try:
                await file.close()
            except Exception:  # pragma: no cover - best effort
                pass

        return _json(ProcessResponse(downloadUrl=url))

    return app
