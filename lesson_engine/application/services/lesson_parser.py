from lesson_engine.core.utils.json_payload import extract_json_object
from lesson_engine.domain.schemas.orchestration import GenerationResult, ParsedLesson, UnparsedLesson


def parse_generation_response(raw: str, expect_json: bool = True) -> GenerationResult:
    """Malformed model output is kept as UnparsedLesson instead of raising."""
    if not expect_json:
        return UnparsedLesson(raw=raw, error="structured output disabled")
    try:
        return ParsedLesson(data=extract_json_object(raw), raw=raw)
    except ValueError as exc:
        return UnparsedLesson(raw=raw, error=str(exc))
