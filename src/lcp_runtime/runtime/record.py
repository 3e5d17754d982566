"""
Runtime record base class.

The model builder creates a fresh ``Record`` subclass per ModelSpec and the
applicators attach behavior to it as data: field descriptors, per-hook
callback chains, validator closures, transform chains and scopes. Nothing
here knows about any particular model.

Persistence uses SQLAlchemy Core against the table built from the ModelSpec.
Callback hooks, in the order a save runs them:

    before_validation -> (validators) -> before_save -> before_create|before_update
    -> INSERT|UPDATE -> after_create|after_update -> after_save

``destroy`` runs ``before_destroy``, DELETE, ``after_destroy``;
``after_initialize`` runs on construction and ``after_load`` on every load.
"""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, ClassVar

import sqlalchemy as sa
from dateutil import parser as date_parser

from lcp_runtime.core.errors import ErrorContext, RecordInvalid, RecordNotFound
from lcp_runtime.core.strings import humanize
from lcp_runtime.runtime.query import Query
from lcp_runtime.specs.field import FieldKind

if TYPE_CHECKING:
    from lcp_runtime.runtime.condition_evaluator import ConditionEvaluator
    from lcp_runtime.runtime.database import DatabaseManager
    from lcp_runtime.runtime.positioning import MoveResult, PositionManager
    from lcp_runtime.runtime.services import ServiceRegistry
    from lcp_runtime.specs.model import ModelSpec

logger = logging.getLogger(__name__)

CALLBACK_HOOKS = (
    "after_initialize",
    "after_load",
    "before_validation",
    "before_save",
    "before_create",
    "before_update",
    "after_create",
    "after_update",
    "after_save",
    "before_destroy",
    "after_destroy",
)

Callback = Callable[["Record"], Any]
Validator = Callable[["Record"], None]


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DATETIME columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class HaltChain(Exception):
    """Raised by a callback to abort the running save or destroy; the transaction rolls back."""


# =============================================================================
# Errors
# =============================================================================


class Errors:
    """Validation messages collected per attribute (``"base"`` for the record as a whole)."""

    BASE = "base"

    def __init__(self) -> None:
        self._messages: dict[str, list[str]] = {}

    def add(self, attribute: str, message: str) -> None:
        messages = self._messages.setdefault(attribute, [])
        if message not in messages:
            messages.append(message)

    def on(self, attribute: str) -> list[str]:
        return list(self._messages.get(attribute, []))

    def __getitem__(self, attribute: str) -> list[str]:
        return self.on(attribute)

    def __contains__(self, attribute: object) -> bool:
        return bool(self._messages.get(attribute))  # type: ignore[call-overload]

    def __bool__(self) -> bool:
        return any(self._messages.values())

    def __len__(self) -> int:
        return sum(len(v) for v in self._messages.values())

    def __iter__(self) -> Iterator[tuple[str, str]]:
        for attribute, messages in self._messages.items():
            for message in messages:
                yield attribute, message

    def clear(self) -> None:
        self._messages.clear()

    def to_dict(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._messages.items() if v}

    @property
    def full_messages(self) -> list[str]:
        return [
            message if attribute == self.BASE else f"{humanize(attribute)} {message}"
            for attribute, message in self
        ]

    def __repr__(self) -> str:
        return f"<Errors {self.to_dict()}>"


# =============================================================================
# Type Casting
# =============================================================================

_TRUE_STRINGS = {"1", "true", "t", "yes", "y", "on"}
_FALSE_STRINGS = {"0", "false", "f", "no", "n", "off"}
_TEXT_KINDS = {FieldKind.STRING, FieldKind.TEXT, FieldKind.RICH_TEXT, FieldKind.ENUM}


def cast_value(kind: FieldKind | None, value: Any) -> Any:
    """
    Cast an assigned value to the Python type of a base field type.

    Raises:
        ValueError: If the value cannot represent the type
    """
    if value is None or kind is None:
        return value
    if isinstance(value, str) and not value.strip() and kind not in _TEXT_KINDS:
        return None

    if kind == FieldKind.INTEGER:
        if isinstance(value, bool):
            raise ValueError("boolean is not an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float | Decimal):
            if value != int(value):
                raise ValueError(f"{value} is not an integer")
            return int(value)
        return int(str(value).strip())
    if kind == FieldKind.DECIMAL:
        if isinstance(value, bool):
            raise ValueError("boolean is not a number")
        try:
            return Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{value!r} is not a number") from exc
    if kind == FieldKind.BOOLEAN:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"{value!r} is not a boolean")
    if kind == FieldKind.DATE:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date_parser.isoparse(str(value).strip()).date()
    if kind == FieldKind.DATETIME:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, datetime.min.time())
        return date_parser.isoparse(str(value).strip())
    if kind in _TEXT_KINDS and not isinstance(value, str):
        return str(value)
    return value


# =============================================================================
# Descriptors
# =============================================================================


def class_member(owner: type | None, name: str, descriptor: Any) -> Any:
    """
    Class-level lookup of a per-record attribute.

    A field or association may share its name with a class query method
    (``count``, ``first``, ``find``). Instances see the attribute; the class
    keeps the query method.
    """
    member = vars(Record).get(name)
    if owner is not None and isinstance(member, classmethod):
        return member.__get__(None, owner)
    return descriptor


class FieldDescriptor:
    """
    Attribute stored in the record's value map.

    Assignment runs the class's transform chain for the field, then casts to
    the field's base type. A value that cannot be cast is kept as assigned and
    reported as invalid at validation time.
    """

    def __init__(self, name: str, kind: FieldKind | None = None):
        self.name = name
        self.kind = kind

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.name, self)
        return record._values.get(self.name)

    def __set__(self, record: Record, value: Any) -> None:
        for transform in type(record)._transforms.get(self.name, ()):
            value = transform(value)
        record._cast_errors.pop(self.name, None)
        try:
            value = cast_value(self.kind, value)
        except (ValueError, TypeError, OverflowError):
            record._cast_errors[self.name] = "is invalid"
        record._values[self.name] = value


# =============================================================================
# Record
# =============================================================================


class Record:
    """
    Base class for runtime model types.

    Subclasses are created by ModelBuilder; class attributes below are filled
    in per build and never shared between builds.
    """

    __model__: ClassVar[ModelSpec]
    __table__: ClassVar[sa.Table]
    __db__: ClassVar[DatabaseManager]
    __services__: ClassVar[ServiceRegistry]
    __evaluator__: ClassVar[ConditionEvaluator]

    _callbacks: ClassVar[dict[str, list[Callback]]] = {}
    _validators: ClassVar[list[Validator]] = []
    _transforms: ClassVar[dict[str, list[Callable[[Any], Any]]]] = {}
    _literal_defaults: ClassVar[dict[str, Any]] = {}
    _scopes: ClassVar[dict[str, Callable[..., Query]]] = {}
    _column_names: ClassVar[tuple[str, ...]] = ()
    _memory_names: ClassVar[tuple[str, ...]] = ()
    _custom_field_accessors: ClassVar[tuple[str, ...]] = ()
    position_manager: ClassVar[PositionManager | None] = None

    def __init__(self, **attributes: Any):
        self._init_state()
        for name, value in type(self)._literal_defaults.items():
            if name not in attributes:
                self._values[name] = copy.deepcopy(value)
        self._supplied = set(attributes)
        self.assign_attributes(attributes)
        self._run_callbacks("after_initialize")

    def _init_state(self) -> None:
        cls = type(self)
        self._values: dict[str, Any] = dict.fromkeys((*cls._column_names, *cls._memory_names))
        self._persisted: dict[str, Any] | None = None
        self._supplied: set[str] = set()
        self._cast_errors: dict[str, str] = {}
        self._destroyed = False
        # Scratch space owned by applicators (nested attributes, pending files)
        self._pending: dict[str, Any] = {}
        self.errors = Errors()

    # -------------------------------------------------------------------------
    # Attributes
    # -------------------------------------------------------------------------

    def assign_attributes(self, attributes: Mapping[str, Any]) -> None:
        """Assign several attributes through their descriptors."""
        cls = type(self)
        for name, value in attributes.items():
            descriptor = inspect.getattr_static(cls, name, None)
            if descriptor is None or not hasattr(descriptor, "__set__"):
                raise AttributeError(f"unknown attribute '{name}' for model '{cls.__model__.name}'")
            setattr(self, name, value)

    def was_supplied(self, name: str) -> bool:
        """True when the attribute was passed to the constructor."""
        return name in self._supplied

    @property
    def new_record(self) -> bool:
        return self._persisted is None

    @property
    def persisted(self) -> bool:
        return self._persisted is not None and not self._destroyed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def previous_values(self) -> dict[str, Any] | None:
        """Column values as last loaded or saved; None for new records."""
        return None if self._persisted is None else dict(self._persisted)

    @property
    def changes(self) -> dict[str, tuple[Any, Any]]:
        """Unsaved column changes as ``{name: (old, new)}``."""
        before = self._persisted or {}
        result: dict[str, tuple[Any, Any]] = {}
        for name in type(self)._column_names:
            old, new = before.get(name), self._values.get(name)
            if old != new:
                result[name] = (old, new)
        return result

    def attribute_changed(self, name: str) -> bool:
        return name in self.changes

    def attribute_was(self, name: str) -> Any:
        return (self._persisted or {}).get(name)

    def to_dict(self) -> dict[str, Any]:
        cls = type(self)
        names = [*cls._column_names, *(n for n in cls.__model__.attribute_names if n not in cls._column_names)]
        return {name: getattr(self, name, None) for name in names}

    def to_label(self) -> str:
        return f"{self.__model__.label} #{self.id}"

    # -------------------------------------------------------------------------
    # Validation & Persistence
    # -------------------------------------------------------------------------

    def _run_callbacks(self, hook: str) -> None:
        for callback in type(self)._callbacks.get(hook, ()):
            callback(self)

    def valid(self) -> bool:
        """
        Run every validator and collect all failures.

        Returns:
            True if no errors were recorded
        """
        self.errors.clear()
        self._run_callbacks("before_validation")
        for name, message in self._cast_errors.items():
            self.errors.add(name, message)
        for validator in type(self)._validators:
            validator(self)
        return not self.errors

    def invalid(self) -> bool:
        return not self.valid()

    def save(self, validate: bool = True) -> bool:
        """
        Validate and persist the record.

        Returns:
            False when validation failed or a callback halted the save
        """
        if self._destroyed:
            raise RuntimeError(f"cannot save a destroyed {self.__model__.name} record")
        if validate and not self.valid():
            logger.debug("%s not saved: %s", self.__model__.name, self.errors.to_dict())
            return False

        creating = self.new_record
        # A failed save leaves the values as they were before the attempt
        values_before = dict(self._values)
        try:
            with self.__db__.transaction() as conn:
                self._run_callbacks("before_save")
                self._run_callbacks("before_create" if creating else "before_update")
                if creating:
                    self._insert(conn)
                else:
                    self._update(conn)
                self._run_callbacks("after_create" if creating else "after_update")
                self._run_callbacks("after_save")
        except HaltChain:
            self._values = values_before
            logger.debug("%s save halted: %s", self.__model__.name, self.errors.to_dict())
            return False
        except Exception:
            self._values = values_before
            raise

        self._snapshot()
        return True

    def save_or_raise(self) -> Record:
        """
        Save or raise.

        Raises:
            RecordInvalid: If validation fails or a callback halts the save
        """
        if not self.save():
            raise RecordInvalid(self, self.errors.to_dict())
        return self

    def _column_values(self) -> dict[str, Any]:
        return {name: self._values.get(name) for name in type(self)._column_names}

    def _insert(self, conn: sa.Connection) -> None:
        table = self.__table__
        row = self._column_values()
        if row.get("id") is None:
            row.pop("id", None)
        if self.__model__.options.timestamps:
            now = utcnow()
            row["created_at"] = self._values["created_at"] = row.get("created_at") or now
            row["updated_at"] = self._values["updated_at"] = row.get("updated_at") or now
        result = conn.execute(table.insert().values(**row))
        self._values["id"] = result.inserted_primary_key[0]

    def _update(self, conn: sa.Connection) -> None:
        changed = {name: new for name, (_, new) in self.changes.items()}
        if not changed:
            return
        if self.__model__.options.timestamps and "updated_at" not in changed:
            changed["updated_at"] = self._values["updated_at"] = utcnow()
        table = self.__table__
        conn.execute(table.update().where(table.c.id == self.id).values(**changed))

    def _snapshot(self) -> None:
        self._persisted = self._column_values()
        self._supplied = set()

    def _load(self, row: Mapping[str, Any]) -> None:
        for name in type(self)._column_names:
            if name in row:
                self._values[name] = row[name]
        self._cast_errors.clear()
        self._snapshot()
        self._run_callbacks("after_load")

    def reload(self) -> Record:
        """Re-read the record's columns from the database."""
        table = self.__table__
        with self.__db__.connection() as conn:
            row = conn.execute(sa.select(table).where(table.c.id == self.id)).mappings().first()
        if row is None:
            raise RecordNotFound(
                f"{self.__model__.name} with id={self.id} not found",
                ErrorContext(model=self.__model__.name),
            )
        self._pending.clear()
        self._load(row)
        return self

    def update(self, **attributes: Any) -> bool:
        """Assign attributes and save."""
        self.assign_attributes(attributes)
        return self.save()

    def update_columns(self, **values: Any) -> None:
        """Write columns directly, skipping validation and callbacks."""
        table = self.__table__
        with self.__db__.transaction() as conn:
            conn.execute(table.update().where(table.c.id == self.id).values(**values))
        self._values.update(values)
        if self._persisted is not None:
            self._persisted.update(values)

    def destroy(self) -> bool:
        """
        Delete the record, running destroy callbacks in one transaction.

        Returns:
            False when a before_destroy callback recorded errors or halted
        """
        if self.new_record:
            self._destroyed = True
            return True
        self.errors.clear()
        table = self.__table__
        try:
            with self.__db__.transaction() as conn:
                self._run_callbacks("before_destroy")
                if self.errors:
                    raise HaltChain()
                conn.execute(table.delete().where(table.c.id == self.id))
                self._run_callbacks("after_destroy")
        except HaltChain:
            logger.debug("%s #%s destroy halted: %s", self.__model__.name, self.id, self.errors.to_dict())
            return False
        self._destroyed = True
        return True

    # -------------------------------------------------------------------------
    # Positioning
    # -------------------------------------------------------------------------

    def move_to(self, target: Any, list_version: str | None = None) -> MoveResult:
        """
        Reposition the record within its scope.

        Args:
            target: 1-based position, ``"first"``, ``"last"``,
                ``{"after": id}`` or ``{"before": id}``
            list_version: Version the caller last observed, for conflict detection
        """
        manager = type(self).position_manager
        if manager is None:
            raise TypeError(f"model '{self.__model__.name}' is not positioned")
        return manager.move(self, target, list_version)

    def list_version(self) -> str:
        """Fingerprint of the ordering of this record's scope."""
        manager = type(self).position_manager
        if manager is None:
            raise TypeError(f"model '{self.__model__.name}' is not positioned")
        return manager.list_version(manager.scope_values(self))

    # -------------------------------------------------------------------------
    # Class-level queries
    # -------------------------------------------------------------------------

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> Record:
        record = cls.__new__(cls)
        record._init_state()
        record._load(row)
        return record

    @classmethod
    def query(cls) -> Query:
        return Query(cls)

    @classmethod
    def where(cls, criteria: Mapping[str, Any] | None = None, **kwargs: Any) -> Query:
        return cls.query().where(criteria, **kwargs)

    @classmethod
    def where_not(cls, criteria: Mapping[str, Any] | None = None, **kwargs: Any) -> Query:
        return cls.query().where_not(criteria, **kwargs)

    @classmethod
    def order_by(cls, *order: str | Mapping[str, str]) -> Query:
        return cls.query().order_by(*order)

    @classmethod
    def all(cls) -> list[Record]:
        return cls.query().all()

    @classmethod
    def count(cls) -> int:
        return cls.query().count()

    @classmethod
    def first(cls) -> Record | None:
        return cls.query().first()

    @classmethod
    def find_by(cls, **criteria: Any) -> Record | None:
        return cls.where(criteria).first()

    @classmethod
    def find(cls, record_id: Any) -> Record:
        """
        Fetch by primary key.

        Raises:
            RecordNotFound: If no row has that id
        """
        record = cls.find_by(id=record_id)
        if record is None:
            raise RecordNotFound(
                f"{cls.__model__.name} with id={record_id} not found",
                ErrorContext(model=cls.__model__.name),
            )
        return record

    @classmethod
    def create(cls, **attributes: Any) -> Record:
        """Build and save; the record is returned even when invalid."""
        record = cls(**attributes)
        record.save()
        return record

    @classmethod
    def create_or_raise(cls, **attributes: Any) -> Record:
        return cls(**attributes).save_or_raise()

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if type(other) is not type(self) or self.id is None:
            return False
        return bool(self.id == other.id)  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        if self.id is None:
            return id(self)
        return hash((type(self).__name__, self.id))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id}>"

    if TYPE_CHECKING:
        id: Any
