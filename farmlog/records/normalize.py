"""Value coercion for fields crossing the wire and storage boundaries."""

import json
from typing import Any

from ..errors import MalformedInputError

# Attachments not yet uploaded are carried inline as data URLs
INLINE_FILE_MARKER = "data:"

# Markup the server wraps around formatted notes: "<p>" and "</p>\n"
NOTES_PREFIX_LEN = 3
NOTES_SUFFIX_LEN = 5

NOTES_FORMAT = "farm_format"


def parse_objects(value: Any) -> list | dict:
    """Coerce a collection field into a list or mapping.

    Accepts the structured value itself or its JSON text.
    """
    if isinstance(value, (list, dict)):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise MalformedInputError(
                f"{value!r} cannot be parsed as an object array"
            ) from e
        if not isinstance(parsed, (list, dict)):
            raise MalformedInputError(
                f"{value!r} cannot be parsed as an object array"
            )
        return parsed
    raise MalformedInputError(f"{value!r} cannot be parsed as an object array")


def _image_ref(item: Any) -> str:
    if isinstance(item, dict) and item.get("id"):
        return str(item["id"])
    if isinstance(item, str):
        return item
    if isinstance(item, int) and not isinstance(item, bool):
        return str(item)
    raise MalformedInputError(f"{item!r} cannot be parsed as an image reference")


def parse_images(value: Any) -> list[str]:
    """Coerce an image field into a list of references.

    The server returns image references as objects; locally they are
    plain strings (file ids, or data URLs not yet uploaded).
    """
    if isinstance(value, (list, tuple)):
        images = []
        for img in value:
            if isinstance(img, str):
                images.append(img)
            elif isinstance(img, dict):
                for item in img.values():
                    images.append(_image_ref(item))
            else:
                raise MalformedInputError(
                    f"{img!r} cannot be parsed as an image reference"
                )
        return images
    if isinstance(value, dict):
        return [_image_ref(item) for item in value.values()]
    if isinstance(value, str):
        return [] if value == "" else [value]
    raise MalformedInputError(f"{value!r} cannot be parsed as an image array")


def prepare_images(images: Any) -> Any:
    """Format image references for the server payload.

    Inline files are sent as-is, references become ``{"fid": ref}``.
    """
    if isinstance(images, list):
        return [
            img if img.startswith(INLINE_FILE_MARKER) else {"fid": img}
            for img in images
        ]
    return images


def parse_bool(value: Any) -> bool:
    """Decode a boolean stored as a bool, 0/1, or its text form."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1"):
            return True
        if text in ("false", "0"):
            return False
    raise MalformedInputError(f"{value!r} cannot be parsed as a boolean")


def decode_done(value: Any) -> bool:
    """Decode the server's integer ``done`` flag."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    try:
        return int(value) == 1
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"{value!r} is not a done flag") from e


def encode_done(value: Any) -> int:
    return 1 if value else 0


def parse_notes(notes: Any) -> str:
    """Pull the note text out of the server's formatted notes and strip its markup."""
    if not isinstance(notes, dict):
        return ""
    value = notes.get("value")
    if value is None or value == "":
        return ""
    return value[NOTES_PREFIX_LEN:-NOTES_SUFFIX_LEN]


def format_notes(text: str) -> dict[str, str]:
    return {"format": NOTES_FORMAT, "value": text}
