"""Pydantic schemas for the lock service wire protocol.

Field names on the wire are camelCase (`expireIn`, `firstResource`); the
Python attributes are snake_case and populated through aliases.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

MAX_CLIENT_LENGTH = 256
MAX_RESOURCE_LENGTH = 255
MAX_EXPIRE_IN = 60000

ClientName = Annotated[
    StrictStr, Field(min_length=1, max_length=MAX_CLIENT_LENGTH)
]
ResourceName = Annotated[
    StrictStr, Field(min_length=1, max_length=MAX_RESOURCE_LENGTH)
]


class LockReleaseRequest(BaseModel):
    """Schema for releasing resources (DELETE /{namespace})."""

    model_config = ConfigDict(extra="ignore")

    client: ClientName
    resources: list[ResourceName]


class LockAcquireRequest(LockReleaseRequest):
    """Schema for acquiring or refreshing resources (POST /{namespace})."""

    expire_in: StrictInt = Field(alias="expireIn", gt=0, le=MAX_EXPIRE_IN)


class LeaseResponse(BaseModel):
    """A non-expired lease as listed by GET /{namespace}."""

    model_config = ConfigDict(populate_by_name=True)

    resource: str
    client: str
    expire_in: int = Field(alias="expireIn")  # ms remaining


class LockConflictResponse(BaseModel):
    """Body of a 409 response: the first resource that is held by someone else."""

    model_config = ConfigDict(populate_by_name=True)

    first_resource: str = Field(alias="firstResource")
    client: str
    expire_in: int = Field(alias="expireIn")  # ms remaining
