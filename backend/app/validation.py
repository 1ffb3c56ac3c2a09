from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# Canonical codes mirror the check constraints on the row-store tables.
PaymentMethod = Annotated[Literal["cash", "card"], BeforeValidator(_to_lower_str)]
StaffRole = Annotated[Literal["manager", "senior_staff", "associate"], BeforeValidator(_to_lower_str)]
MemberStatus = Annotated[Literal["active", "expired", "suspended"], BeforeValidator(_to_lower_str)]
PackageType = Annotated[Literal["individual", "couple", "family", "corporate"], BeforeValidator(_to_lower_str)]
AnalyticsPeriod = Annotated[Literal["day", "week", "month", "quarter", "year"], BeforeValidator(_to_lower_str)]

# The weak-pattern blocklist is applied where a PIN is set, not where one is checked.
Pin = Annotated[str, BeforeValidator(_strip_str), StringConstraints(pattern=r"^[0-9]{4}$")]

Email = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]

PersonName = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1, max_length=50)]

Phone = Annotated[
    str,
    BeforeValidator(_strip_str),
    StringConstraints(min_length=7, max_length=20, pattern=r"^\+?[0-9 ()\-]+$"),
]
