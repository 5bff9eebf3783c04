from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


SERVICE_ROLE = "service_role"


class AuthUser(BaseModel):
    """
    Represents an authenticated caller decoded from a bearer token.

    Business owners carry their auth id in ``sub``; internal services carry
    ``service:<name>`` and the ``service_role`` role.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[str] = None
    role: str = "authenticated"

    @property
    def is_service(self) -> bool:
        return self.role == SERVICE_ROLE
