"""Normalisation of grid payloads into typed updates and envelopes."""
from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from typing import Any

from artwork_backend.core.errors import ValidationError
from artwork_backend.domain import (
    ABSENT,
    ApprovalStatus,
    CompletionRequest,
    FileStatus,
    IdentityPatch,
    Provenance,
    Required,
    UpdateEnvelope,
    WorkItemUpdate,
)

_YES = {"yes", "y", "1", "true"}
_NO = {"no", "n", "0", "false"}

# wire key -> (WorkItemUpdate field, kind)
_UPDATE_FIELDS: dict[str, tuple[str, str]] = {
    "FileStatus": ("file_status", "file_status"),
    "FileReceivedDate": ("file_received_date", "date"),
    "SoftApprovalReqd": ("soft_required", "yes_no"),
    "SoftApprovalStatus": ("soft_status", "approval"),
    "HardApprovalReqd": ("hard_required", "yes_no"),
    "HardApprovalStatus": ("hard_status", "approval"),
    "MProofApprovalReqd": ("machine_proof_required", "yes_no"),
    "MProofApprovalStatus": ("machine_proof_status", "approval"),
    "ToolingDie": ("tooling_die", "text"),
    "ToolingBlock": ("tooling_block", "text"),
    "Blanket": ("tooling_blanket", "text"),
    "ToolingRemark": ("tooling_remark", "text"),
    "PlateOutput": ("plate_output", "text"),
    "PlateRemark": ("plate_remark", "text"),
    "ArtworkRemark": ("artwork_remark", "text"),
    "ClientName": ("client_name", "text"),
    "RefPCC": ("reference", "text"),
}

_BOOKING_KEYS = ("CategoryID", "OrderBookingID", "JobBookingID")


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_yes_no(value: Any) -> Required:
    text = (clean_text(value) or "").lower()
    if text in _YES:
        return Required.YES
    if text in _NO:
        return Required.NO
    return Required.UNSET


def normalize_file_status(value: Any) -> FileStatus | None:
    text = (clean_text(value) or "").lower()
    if not text:
        return None
    if text == "received":
        return FileStatus.RECEIVED
    if text == "old":
        return FileStatus.OLD
    return FileStatus.PENDING


def normalize_approval_status(value: Any) -> ApprovalStatus | None:
    text = (clean_text(value) or "").lower()
    if not text:
        return None
    candidate = text[0].upper() + text[1:]
    try:
        return ApprovalStatus(candidate)
    except ValueError:
        return ApprovalStatus.PENDING


def coerce_datetime(value: Any) -> datetime | None:
    """Coerce store or wire values into an aware UTC datetime.

    Unparseable input yields ``None``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return coerce_datetime(parsed)


def coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        try:
            as_float = float(str(value).strip())
        except (TypeError, ValueError):
            return None
        if not as_float.is_integer():
            return None
        number = int(as_float)
    return number


def build_update(raw: Mapping[str, Any] | None) -> WorkItemUpdate:
    """Translate grid column names into a :class:`WorkItemUpdate`.

    Keys the caller did not send stay :data:`ABSENT`; unknown keys are ignored.
    """

    raw = raw or {}
    values: dict[str, Any] = {}
    for wire_key, (field_name, kind) in _UPDATE_FIELDS.items():
        if wire_key not in raw:
            continue
        value = raw[wire_key]
        if kind == "yes_no":
            values[field_name] = normalize_yes_no(value)
        elif kind == "approval":
            values[field_name] = normalize_approval_status(value)
        elif kind == "file_status":
            values[field_name] = normalize_file_status(value)
        elif kind == "date":
            values[field_name] = coerce_datetime(value)
        else:
            values[field_name] = clean_text(value)

    for link_key in ("LinkofSoftApprovalfile", "SoftApprovalLink"):
        if link_key in raw:
            values["soft_link"] = clean_text(raw[link_key])
            break

    return WorkItemUpdate(**values)


def _identity_patch(
    raw: Mapping[str, Any],
    *,
    id_key: str,
    name_key: str,
    user_key_key: str,
) -> IdentityPatch:
    explicit_id: Any = ABSENT
    if id_key in raw:
        explicit_id = coerce_int(raw[id_key])
    display_name: Any = ABSENT
    if name_key in raw:
        display_name = clean_text(raw[name_key])
    user_key: Any = ABSENT
    if user_key_key in raw:
        user_key = clean_text(raw[user_key_key])
    return IdentityPatch(explicit_id=explicit_id, display_name=display_name, user_key=user_key)


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_store_id(provenance: Provenance, value: Any) -> int | str:
    if provenance.is_relational:
        number = coerce_int(value)
        if number is None or number <= 0:
            raise ValidationError("a positive numeric store_id is required for shard records")
        return number
    text = clean_text(value)
    if not text:
        raise ValidationError("a document id is required for document records")
    return text


def parse_provenance(value: Any) -> Provenance:
    try:
        return Provenance.parse(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def parse_envelope(payload: Mapping[str, Any]) -> UpdateEnvelope:
    """Validate one raw update envelope."""

    provenance = parse_provenance(_first_present(payload, "provenance", "__SourceDB"))
    if provenance.is_relational:
        raw_id = _first_present(payload, "store_id", "OrderBookingDetailsID")
    else:
        raw_id = _first_present(payload, "store_id", "__MongoId", "__MongoID", "mongoId")
    store_id = parse_store_id(provenance, raw_id)

    raw_update = payload.get("update") or {}
    if not isinstance(raw_update, Mapping):
        raise ValidationError("update must be an object")

    # a root-level EmployeeID overrides the one inside the update
    identity_source: dict[str, Any] = dict(raw_update)
    if "EmployeeID" in payload:
        identity_source["EmployeeID"] = payload["EmployeeID"]

    booking: dict[str, int | None] = {}
    for key in _BOOKING_KEYS:
        if key in payload:
            booking[key] = coerce_int(payload[key]) or None

    acting_user = _first_present(payload, "acting_user", "updatedBy", "createdBy") or "Coordinator"

    return UpdateEnvelope(
        provenance=provenance,
        store_id=store_id,
        update=build_update(raw_update),
        prepress=_identity_patch(
            identity_source, id_key="EmployeeID", name_key="PrepressPerson", user_key_key="EmployeeUserKey"
        ),
        tooling=_identity_patch(
            identity_source, id_key="ToolingPersonID", name_key="ToolingPerson", user_key_key="ToolingUserKey"
        ),
        plate=_identity_patch(
            identity_source, id_key="PlatePersonID", name_key="PlatePerson", user_key_key="PlateUserKey"
        ),
        booking=booking,
        acting_user=str(acting_user),
    )


def parse_completion(payload: Mapping[str, Any]) -> CompletionRequest:
    provenance = parse_provenance(_first_present(payload, "provenance", "__SourceDB"))
    if provenance.is_relational:
        raw_id = _first_present(payload, "store_id", "ID")
    else:
        raw_id = _first_present(payload, "store_id", "__MongoId", "ID")
    operation = clean_text(_first_present(payload, "operation", "Operation"))
    if not operation:
        raise ValidationError("operation is required")
    return CompletionRequest(
        provenance=provenance,
        store_id=parse_store_id(provenance, raw_id),
        operation=operation,
        ledger_id=coerce_int(_first_present(payload, "ledger_id", "ledgerid")),
        remark=clean_text(_first_present(payload, "remark", "Remark")),
        link=clean_text(_first_present(payload, "link", "Link")),
    )
