"""Fixed-layout records read from and written to sector buffers."""

from __future__ import annotations

import struct
from dataclasses import InitVar
from typing import Any, ClassVar, NamedTuple, TypeVar

from typing_extensions import Annotated, get_args, get_origin, get_type_hints

from .base import ValidationError
from .typing_ import NoneType

__all__ = ['ByteStruct']


INT_CONVERSION = {1: 'B', 2: 'H', 4: 'I', 8: 'Q'}
INTERNAL_NAMES = (
    '__bytestruct_fields__',
    '__bytestruct_format__',
    '__bytestruct_size__',
    '__bytestruct_cached__',
)

_Bs = TypeVar('_Bs', bound='ByteStruct')


class _FieldDescriptor(NamedTuple):
    """Metadata about a field of a ``ByteStruct``.

    - ``type_origin``: ``int``, ``bytes`` or ``NoneType`` for annotated fields, or
        the ``ByteStruct`` subclass if the field represents an embedded record.
    - ``size``: Size of the field in bytes.
    - ``is_bytestruct``: True if the field represents an embedded ``ByteStruct``.
    """

    type_origin: Any
    size: int
    is_bytestruct: bool = False


class _ByteStructMeta(type):
    """Metaclass of ``ByteStruct``.

    Analyzes the type annotations of a ``ByteStruct`` subclass and derives the
    ``struct`` format string, the field table and the record size from them.
    All records are little-endian as every multi-byte value of the FAT on-disk
    format is.
    """

    def __init__(cls, name: str, bases: tuple[type, ...], namespace: dict[str, Any]):
        super().__init__(name, bases, namespace)
        if not bases:
            return  # cls is ByteStruct

        type_hints = get_type_hints(cls, include_extras=True)
        format_ = '<'
        fields = {}

        for field_name, type_ in type_hints.items():
            if field_name in INTERNAL_NAMES or type(type_) is InitVar:
                continue

            origin = get_origin(type_)
            if origin is ClassVar:
                continue

            # Embedded record, packed as bytes
            if isinstance(type_, cls.__class__) and type_ is not ByteStruct:
                size = len(type_)
                format_ += f'{size}s'
                fields[field_name] = _FieldDescriptor(type_, size, True)
                continue

            if origin is not Annotated:
                raise TypeError(
                    f'Unannotated type {type_} of field {field_name!r} is not allowed '
                    f'for ByteStruct'
                )

            annotated_type, size = get_args(type_)[:2]
            if not isinstance(size, int):
                raise TypeError('Field size must be specified as int')
            if size < 1:
                raise ValueError('Field size must be greater than or equal to 1')

            if annotated_type is int:
                if size not in INT_CONVERSION:
                    raise ValueError(
                        f'Invalid int field size {size}, must be one of '
                        f'{tuple(INT_CONVERSION)}'
                    )
                format_ += INT_CONVERSION[size]
            elif annotated_type is bytes:
                format_ += f'{size}s'
            elif annotated_type is NoneType:
                format_ += f'{size}x'  # reserved bytes, written as zeroes
            else:
                raise TypeError(
                    f'Annotated type {annotated_type} of field {field_name!r} is not '
                    f'allowed for ByteStruct'
                )

            fields[field_name] = _FieldDescriptor(annotated_type, size)

        cls.__bytestruct_fields__ = fields
        cls.__bytestruct_format__ = format_
        cls.__bytestruct_size__ = struct.calcsize(format_)

    def __len__(cls) -> int:
        """Size of the record in bytes."""
        return cls.__bytestruct_size__


class ByteStruct(metaclass=_ByteStructMeta):
    """Packed little-endian record such as a directory entry or a BPB.

    Every ``ByteStruct`` subclass must be a frozen ``dataclass``. Fields are
    declared in on-disk order::

        @dataclasses.dataclass(frozen=True)
        class PartitionEntry(ByteStruct):

            boot_indicator: Annotated[int, 1]   # unsigned int of size 1 byte
            chs_start: Annotated[bytes, 3]      # bytes of size 3
            system: Annotated[int, 1]
            chs_end: Annotated[bytes, 3]
            start_lba: Annotated[int, 4]        # unsigned int of size 4 bytes
            size_lba: Annotated[int, 4]

    ``Annotated[None, n]`` declares ``n`` reserved bytes and another
    ``ByteStruct`` subclass as a field type embeds that record.

    Offsets are computed once per class, so code dealing with on-disk structures
    never spells out byte offsets itself. Use ``from_buffer()`` and
    ``pack_into()`` to work on a record located inside a sector buffer.

    Custom validation logic can be added by overriding ``validate()``.
    """

    # Populated per class
    __bytestruct_fields__: 'dict[str, _FieldDescriptor]'
    __bytestruct_format__: str
    __bytestruct_size__: int

    # Populated per instance
    __bytestruct_cached__: bytes

    @classmethod
    def _check_direct_instantiation(cls) -> None:
        if cls.__bases__ == (object,):
            raise TypeError(f'Cannot directly instantiate {cls.__name__}')

    @classmethod
    def _check_frozen_dataclass(cls) -> None:
        params: Any = getattr(cls, '__dataclass_params__', None)
        if params is None or not params.frozen:
            raise TypeError('ByteStruct subclass must be a frozen dataclass')

    # noinspection PyUnusedLocal
    def __init__(self, *args: Any, **kwargs: Any):
        self._check_direct_instantiation()
        self._check_frozen_dataclass()

    def __post_init__(self) -> None:
        self._check_frozen_dataclass()
        if not hasattr(self, '__bytestruct_cached__'):
            self._validate_and_cache()
        self.validate()

    def _validate_and_cache(self) -> None:
        """Validate field values against their sizes and cache the packed record."""
        values = []

        for name, descriptor in self.__bytestruct_fields__.items():
            type_ = descriptor.type_origin
            if type_ is NoneType:
                continue

            value = getattr(self, name)
            if descriptor.is_bytestruct:
                values.append(bytes(value))
                continue

            if type_ is bytes and len(value) != descriptor.size:
                raise ValidationError(
                    f'Value of field {name!r} must be of length {descriptor.size} '
                    f'bytes, got {len(value)} bytes'
                )
            values.append(value)

        try:
            bytes_ = struct.pack(self.__bytestruct_format__, *values)
        except (struct.error, OverflowError) as e:
            raise ValidationError(
                f'Value out of range (format is {self.__bytestruct_format__!r})'
            ) from e

        # Avoid __setattr__() here because this is a frozen dataclass.
        self.__dict__['__bytestruct_cached__'] = bytes_

    def validate(self) -> None:
        """Custom validation logic.

        Executed after object creation, once the field values were packed
        successfully.
        """

    @classmethod
    def from_bytes(cls: type[_Bs], b: bytes) -> _Bs:
        """Parse record from ``bytes`` of exactly the record size."""
        cls._check_direct_instantiation()
        size = cls.__bytestruct_size__

        if len(b) != size:
            raise ValueError(f'Structure is {size} bytes long, got {len(b)} bytes')

        unpacked_values = iter(struct.unpack(cls.__bytestruct_format__, b))
        values: list[Any] = []

        for descriptor in cls.__bytestruct_fields__.values():
            type_ = descriptor.type_origin
            if type_ is NoneType:
                values.append(None)
                continue
            value = next(unpacked_values)
            if descriptor.is_bytestruct:
                value = type_.from_bytes(value)
            values.append(value)

        self = cls(*values)
        self.__dict__['__bytestruct_cached__'] = bytes(b)
        return self

    @classmethod
    def from_buffer(cls: type[_Bs], buffer: bytes | bytearray, offset: int = 0) -> _Bs:
        """Parse record found at ``offset`` of ``buffer``."""
        end = offset + cls.__bytestruct_size__
        if offset < 0 or end > len(buffer):
            raise ValueError(f'Record at offset {offset} exceeds buffer bounds')
        return cls.from_bytes(bytes(buffer[offset:end]))

    def pack_into(self, buffer: bytearray, offset: int = 0) -> None:
        """Write the packed record into ``buffer`` at ``offset``."""
        end = offset + self.__bytestruct_size__
        if offset < 0 or end > len(buffer):
            raise ValueError(f'Record at offset {offset} exceeds buffer bounds')
        buffer[offset:end] = self.__bytestruct_cached__

    def __bytes__(self) -> bytes:
        return self.__bytestruct_cached__

    def __len__(self) -> int:
        return self.__bytestruct_size__
