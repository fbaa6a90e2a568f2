import json
import re
from typing import Any, Dict, Mapping

from config import PASSWORD_MIN_LENGTH, USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH
from errors import ValidationError

REQUIRED_RESULT_FIELDS = ("composition", "lighting", "color", "subject", "perspective")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def validate_credentials(username: Any, password: Any) -> None:
    """
    Check registration input before anything is written.
    """
    if not username or not password:
        raise ValidationError("Username and password are required.")
    if not isinstance(username, str) or not isinstance(password, str):
        raise ValidationError("Username and password must be strings.")
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters long."
        )
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.")


def validate_analysis_result(result: Any) -> Dict[str, Any]:
    """
    Accept an analysis document only if it is an object carrying all five
    required fields. The first missing field is named in the error.
    """
    if not isinstance(result, Mapping):
        raise ValidationError("Analysis result must be an object.")
    for name in REQUIRED_RESULT_FIELDS:
        if name not in result:
            raise ValidationError(f"Analysis result is missing required field: {name}")
    return dict(result)


def parse_analysis_result(content: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a vision model's text reply and validate
    it. Models often wrap the object in prose or code fences.
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ValidationError("Could not find a JSON result in the response.")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Could not parse the JSON result: {exc.msg}") from exc
    return validate_analysis_result(data)
