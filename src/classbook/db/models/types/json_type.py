from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.dialects.postgresql import JSONB


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.types import TypeEngine

    _Base = types.TypeDecorator[dict[str, Any]]
else:
    _Base = types.TypeDecorator


class JSON(_Base):
    """ A JSON type that coerces None's to empty dictionaries. Uses JSONB
    on PostgreSQL and the generic JSON type elsewhere.

    That is, this column cannot be `'null'::jsonb`. It could still be
    `NULL` though, if it's nullable and never explicitly set. But on the
    Python end you should always see a dictionary.

    """

    impl = types.JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(types.JSON())

    def process_bind_param(  # type:ignore[override]
        self,
        value: dict[str, Any] | None,
        dialect: Dialect
    ) -> dict[str, Any]:

        return {} if value is None else value

    def process_result_value(
        self,
        value: dict[str, Any] | None,
        dialect: Dialect
    ) -> dict[str, Any]:

        return {} if value is None else value


MutableDict.associate_with(JSON)  # type:ignore[no-untyped-call]
