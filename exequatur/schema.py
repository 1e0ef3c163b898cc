from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .normalize import collapse_whitespace, digits_only

ID_KEYS = ["cedula", "id_number", "idNumber"]
FULL_NAME_KEYS = ["nombreCompleto", "full_name", "fullName"]
GIVEN_NAME_KEY = "nombres"
SURNAME_KEY = "apellidos"

MAX_NAME_LENGTH = 200
ID_LENGTH = 11  # Dominican cedula: 3-7-1 digits


class ValidationError(ValueError):
    """Raised when a verification request carries no usable identity."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass(frozen=True)
class Query:
    id_number: Optional[str] = None
    full_name: str = ""

    @property
    def search_term(self) -> str:
        """What gets typed into the registry search box."""
        return self.id_number or self.full_name


def _first_present(data: Mapping[str, Any], keys: List[str]) -> Any:
    for k in keys:
        v = data.get(k)
        if v is not None and str(v).strip() != "":
            return v
    return None


def validate_query(data: Mapping[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    for k in ID_KEYS + FULL_NAME_KEYS + [GIVEN_NAME_KEY, SURNAME_KEY]:
        if k in data and data[k] is not None and not isinstance(data[k], (str, int)):
            errors.append(f"Field '{k}' must be a string if provided")
    if errors:
        return errors

    raw_id = _first_present(data, ID_KEYS)
    name = _joined_name(data)

    if raw_id is None and not name:
        errors.append("Provide a cedula or a full name to verify")
        return errors

    # An unusable cedula only matters when there is no name to search by.
    if raw_id is not None and not name:
        errors.extend(_id_errors(raw_id))

    if len(name) > MAX_NAME_LENGTH:
        errors.append(f"Name must be at most {MAX_NAME_LENGTH} characters")

    return errors


def _id_errors(raw_id: Any) -> List[str]:
    digits = digits_only(raw_id)
    if not digits:
        return ["Field 'cedula' must contain digits"]
    if len(digits) != ID_LENGTH:
        return [f"Field 'cedula' must have {ID_LENGTH} digits, got {len(digits)}"]
    return []


def _joined_name(data: Mapping[str, Any]) -> str:
    full = _first_present(data, FULL_NAME_KEYS)
    if full is not None:
        return collapse_whitespace(str(full))
    given = str(data.get(GIVEN_NAME_KEY) or "")
    surnames = str(data.get(SURNAME_KEY) or "")
    return collapse_whitespace(f"{given} {surnames}")


def build_query(data: Mapping[str, Any]) -> Query:
    """
    Validate raw request fields and build an immutable Query.

    A malformed cedula next to a usable name is dropped and the lookup
    goes by name.
    """
    errors = validate_query(data)
    if errors:
        raise ValidationError(errors)
    raw_id = _first_present(data, ID_KEYS)
    usable_id = raw_id is not None and not _id_errors(raw_id)
    return Query(
        id_number=digits_only(raw_id) if usable_id else None,
        full_name=_joined_name(data),
    )
