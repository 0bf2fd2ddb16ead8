import io

import pytest

from vocalstrip.exceptions import ClientInputError
from vocalstrip.models import DEFAULT_CUTOFF_HZ, ErrorResponse, ProcessResponse, parse_request


def _parse(**fields: str | None):
    return parse_request(io.BytesIO(b"data"), "song.mp3", **fields)


class TestStrategySelection:
    def test_defaults_to_fast_path(self) -> None:
        request = _parse()

        assert request.strategy == "fast"
        assert request.keep_bass is True
        assert request.cutoff_hz == DEFAULT_CUTOFF_HZ
        assert request.model == "htdemucs"

    def test_demucs_selects_model_based(self) -> None:
        request = _parse(engine="demucs", model="mdx_extra")

        assert request.strategy == "model-based"
        assert request.model == "mdx_extra"

    def test_unknown_engine_is_rejected(self) -> None:
        with pytest.raises(ClientInputError, match="Unknown engine"):
            _parse(engine="spleeter")

    @pytest.mark.parametrize("model", ["--help", "-n", "a b", "../x", ".hidden"])
    def test_model_that_could_be_a_flag_is_rejected(self, model: str) -> None:
        with pytest.raises(ClientInputError, match="Invalid model"):
            _parse(engine="demucs", model=model)

    def test_blank_model_falls_back_to_default(self) -> None:
        assert _parse(engine="demucs", model="").model == "htdemucs"


class TestKeepBass:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(None, True), ("true", True), ("false", False), ("TRUE", False), ("1", False)],
    )
    def test_only_literal_true_enables_bass(self, raw: str | None, expected: bool) -> None:
        assert _parse(keep_bass=raw).keep_bass is expected


class TestAggression:
    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_uses_default(self, raw: str | None) -> None:
        assert _parse(aggression=raw).cutoff_hz == 140.0

    def test_numeric_value_is_kept(self) -> None:
        assert _parse(aggression="99.5").cutoff_hz == 99.5

    @pytest.mark.parametrize("raw", ["abc", "nan", "inf", "-inf", "0", "-20"])
    def test_unusable_values_are_rejected(self, raw: str) -> None:
        with pytest.raises(ClientInputError, match="Invalid aggression"):
            _parse(aggression=raw)


class TestResponseModels:
    def test_success_shape(self) -> None:
        body = ProcessResponse(downloadUrl="http://x/out/a.m4a").model_dump(exclude_none=True)

        assert body == {"ok": True, "downloadUrl": "http://x/out/a.m4a"}

    def test_error_shape_omits_missing_fields(self) -> None:
        body = ErrorResponse(error="No file").model_dump(exclude_none=True)

        assert body == {"ok": False, "error": "No file"}
