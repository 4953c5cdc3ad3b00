"""CPU architecture of EC2 instance types."""
import enum
import re

# Graviton families put a 'g' right after the generation number, e.g. m6g,
# c7gn, t4g, x2gd, im4gn.
_GRAVITON_FAMILY_PATTERN = re.compile(r'^[a-z]+\d+g')
_ARM_FAMILIES = frozenset({'a1'})


class CpuArch(enum.Enum):
    X86_64 = 'x86_64'
    AARCH64 = 'aarch64'

    def ubuntu_arch_identifier(self) -> str:
        """Returns the architecture name used in Ubuntu image paths."""
        if self == CpuArch.AARCH64:
            return 'arm64'
        return 'amd64'


def get_arch_of_instance_type(instance_type: str) -> CpuArch:
    family = instance_type.lower().split('.', 1)[0]
    if family in _ARM_FAMILIES or _GRAVITON_FAMILY_PATTERN.match(family):
        return CpuArch.AARCH64
    return CpuArch.X86_64
