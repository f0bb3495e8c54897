"""The service-account credential the reloader authenticates with."""
from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass

ACCOUNT_NAME = "gf-provisioning-config-reloader"


@dataclass(frozen=True, slots=True)
class ServiceAccountCredential:
    """Login details of the Grafana account owned by this reloader node."""

    id: str
    email: str
    login: str
    password: str

    def to_dict(self) -> dict[str, str]:
        """Return the serialisable form written to the identity file."""
        return asdict(self)

    def to_account_payload(self) -> dict[str, str]:
        """Return the body expected by ``POST /api/admin/users``."""
        return {"email": self.email, "login": self.login, "password": self.password}

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> ServiceAccountCredential:
        """Build a credential from *data*, raising ``ValueError`` when malformed."""
        values: dict[str, str] = {}
        for key in ("email", "login", "password"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise ValueError(f"missing or invalid '{key}'")
            values[key] = value
        # Files written before ids were recorded carry the id inside the password.
        raw_id = data.get("id", values["password"])
        if not isinstance(raw_id, str) or not raw_id:
            raise ValueError("missing or invalid 'id'")
        return cls(id=raw_id, **values)


def derive_node_id(hostname: str) -> str:
    """Return the deterministic node identifier for *hostname*."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, hostname))


def candidate_credential(node_id: str) -> ServiceAccountCredential:
    """Return the credential this node would register with Grafana."""
    return ServiceAccountCredential(
        id=node_id,
        email=f"{node_id}@{ACCOUNT_NAME}",
        login=f"{ACCOUNT_NAME}-{node_id}",
        password=node_id,
    )


__all__ = [
    "ACCOUNT_NAME",
    "ServiceAccountCredential",
    "candidate_credential",
    "derive_node_id",
]
