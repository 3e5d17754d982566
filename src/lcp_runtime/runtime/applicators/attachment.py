"""
Attachment applicator.

Attachment fields own no column. Assigned files stay pending on the record
until it is saved, then go to the AttachmentStore; destroying the record
purges its files. Size, count and content type limits are validation errors.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.attachments import AttachedFile, AttachmentStore, content_type_allowed
from lcp_runtime.runtime.record import Record, class_member
from lcp_runtime.specs.field import AttachmentOptions, FieldSpec

logger = logging.getLogger(__name__)


def _pending_key(name: str) -> str:
    return f"attachment:{name}"


def attached_files(record: Record, name: str, store: AttachmentStore) -> list[AttachedFile]:
    """Pending files when assigned, otherwise what the store holds."""
    pending = record._pending.get(_pending_key(name))
    if pending is not None:
        return list(pending)
    if record.id is None:
        return []
    return store.load(record.__model__.name, record.id, name)


class AttachmentDescriptor:
    """``record.avatar`` (single) or ``record.documents`` (multiple)."""

    def __init__(self, name: str, multiple: bool, store: AttachmentStore):
        self.name = name
        self.multiple = multiple
        self.store = store

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.name, self)
        files = attached_files(record, self.name, self.store)
        if self.multiple:
            return files
        return files[0] if files else None

    def __set__(self, record: Record, value: Any) -> None:
        if value is None:
            files = []
        elif isinstance(value, list | tuple):
            files = [AttachedFile.coerce(v) for v in value]
        else:
            files = [AttachedFile.coerce(value)]
        if not self.multiple and len(files) > 1:
            raise ValueError(f"'{self.name}' accepts a single file")
        record._pending[_pending_key(self.name)] = files


class AttachmentApplicator(Applicator):
    name = "attachment"

    def apply(self, ctx: BuildContext) -> None:
        fields = ctx.spec.attachment_fields
        if not fields:
            return
        store = ctx.attachment_store
        model_name = ctx.spec.name

        for field in fields:
            options = field.attachment or AttachmentOptions()
            setattr(ctx.model_cls, field.name, AttachmentDescriptor(field.name, options.multiple, store))
            ctx.add_validator(self._validator(field, options, store))

        names = [f.name for f in fields]

        def store_files(record: Record) -> None:
            for name in names:
                pending = record._pending.pop(_pending_key(name), None)
                if pending is not None:
                    store.save(model_name, record.id, name, pending)

        def purge_files(record: Record) -> None:
            store.purge(model_name, record.id)

        ctx.add_callback("after_save", store_files)
        ctx.add_callback("after_destroy", purge_files)

    def _validator(
        self, field: FieldSpec, options: AttachmentOptions, store: AttachmentStore
    ) -> Callable[[Record], None]:
        name = field.name
        max_bytes, min_bytes = options.max_bytes, options.min_bytes
        allowed = options.content_types

        if not options.multiple:

            def validate_single(record: Record) -> None:
                files = attached_files(record, name, store)
                if not files:
                    return
                file = files[0]
                if max_bytes is not None and file.size > max_bytes:
                    record.errors.add(name, f"is too large (maximum is {options.max_size})")
                if min_bytes is not None and file.size < min_bytes:
                    record.errors.add(name, f"is too small (minimum is {options.min_size})")
                if not content_type_allowed(file.content_type, allowed):
                    record.errors.add(name, f"has an invalid content type ({file.content_type})")

            return validate_single

        def validate_multiple(record: Record) -> None:
            files = attached_files(record, name, store)
            if not files:
                return
            if options.max_files is not None and len(files) > options.max_files:
                record.errors.add(name, f"has too many files (maximum is {options.max_files})")
            # One message for the first offending file
            for file in files:
                if max_bytes is not None and file.size > max_bytes:
                    record.errors.add(
                        name, f"contains a file that is too large (maximum is {options.max_size})"
                    )
                    break
                if min_bytes is not None and file.size < min_bytes:
                    record.errors.add(
                        name, f"contains a file that is too small (minimum is {options.min_size})"
                    )
                    break
                if not content_type_allowed(file.content_type, allowed):
                    record.errors.add(
                        name,
                        f"contains a file with an invalid content type ({file.content_type})",
                    )
                    break

        return validate_multiple
