from __future__ import annotations

import uuid

from sqlalchemy import types


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect

    _Base = types.TypeDecorator['SoftUUID']
else:
    _Base = types.TypeDecorator


class SoftUUID(uuid.UUID):
    """ Behaves just like the UUID class, but allows strings to be compared
    with it, so that SoftUUID('my-uuid') == 'my-uuid' equals True.

    """

    def __eq__(self, other: object) -> bool:

        if isinstance(other, str):
            return self.hex == other.replace('-', '').strip()

        if isinstance(other, uuid.UUID):
            return self.int == other.int

        return False

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash(self.int)


class UUID(_Base):
    """ A UUID column returning SoftUUIDs. Native on PostgreSQL, stored as
    32 character string elsewhere.

    """
    impl = types.Uuid
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(as_uuid=False)

    def process_bind_param(
        self,
        value: uuid.UUID | str | None,
        dialect: Dialect
    ) -> str | None:

        if value is not None:
            return str(value)
        return None

    def process_result_value(
        self,
        value: str | None,
        dialect: Dialect
    ) -> SoftUUID | None:
        if value is not None:
            return SoftUUID(int=int(str(value).replace('-', ''), 16))
        return None
