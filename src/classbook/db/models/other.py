from __future__ import annotations


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing import Protocol

    import classbook.db.models as _models

    class _Models(Protocol):
        Reservation: type[_models.Reservation]
        RecurringTemplate: type[_models.RecurringTemplate]
        Room: type[_models.Room]
        Slot: type[_models.Slot]


models = None


class OtherModels:
    """ Mixin class which allows for all models to access the other model
    classes without causing circular imports. """

    @property
    def models(self) -> _Models:
        global models
        if not models:
            from classbook.db import models as m_
            models = m_

        return models
