"""Object identity and metadata shared by every stored kind."""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ObjectKey(BaseModel):
    """Namespaced identity of a stored object."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class OwnerReference(BaseModel):
    """Back-reference from a dependent object to the object that owns it."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


class ObjectMeta(BaseModel):
    """Metadata carried by every stored object."""

    name: str
    namespace: str
    uid: str = ""
    labels: Dict[str, str] = {}
    owner_references: List[OwnerReference] = []
    version: Optional[int] = None           # Assigned by the store on write

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)
