"""Instance type capacity, overhead and SKU descriptions for Azure VM sizes."""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field
from fractions import Fraction
from functools import total_ordering
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

from aksprovision.gpu import is_nvidia_enabled_sku

MEMORY_AVAILABLE = "memory.available"
DEFAULT_MEMORY_AVAILABLE = "750Mi"

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_EPHEMERAL_STORAGE = "ephemeral-storage"
RESOURCE_PODS = "pods"
RESOURCE_NVIDIA_GPU = "nvidia.com/gpu"

DEFAULT_MAX_PODS = 110

# VM sizes AKS does not support.
RESTRICTED_VM_SIZES: FrozenSet[str] = frozenset(
    {
        "Standard_A0",
        "Standard_A1",
        "Standard_A1_v2",
        "Standard_B1s",
        "Standard_B1ms",
        "Standard_F1",
        "Standard_F1s",
        "Basic_A0",
        "Basic_A1",
        "Basic_A2",
        "Basic_A3",
        "Basic_A4",
    }
)


@dataclass(frozen=True)
class TaxBracket:
    """One bracket: `rate` applies to the amount up to `upper_bound`."""

    upper_bound: float
    rate: float


class TaxBrackets(tuple):
    """A bracketed tax structure; the first bracket's lower bound is 0."""

    def calculate(self, amount: float) -> float:
        """Return the tax owed on `amount` (memory in GiB or CPU in cores)."""
        tax = 0.0
        lower = 0.0
        for bracket in self:
            if lower > amount:
                break
            upper = min(bracket.upper_bound, amount)
            tax += (upper - lower) * bracket.rate
            lower = bracket.upper_bound
        return tax


RESERVED_MEMORY_TAX_GI = TaxBrackets(
    (
        TaxBracket(4, 0.25),
        TaxBracket(8, 0.20),
        TaxBracket(16, 0.10),
        TaxBracket(128, 0.06),
        TaxBracket(math.inf, 0.02),
    )
)

RESERVED_CPU_TAX_VCPU = TaxBrackets(
    (
        TaxBracket(1, 0.06),
        TaxBracket(2, 0.04),
        TaxBracket(4, 0.02),
        TaxBracket(math.inf, 0.01),
    )
)


class QuantityFormat(enum.Enum):
    """How a quantity is written out."""

    DECIMAL_SI = "DecimalSI"
    BINARY_SI = "BinarySI"


_BINARY_SUFFIXES = ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei")
_DECIMAL_SUFFIXES = {
    -9: "n",
    -6: "u",
    -3: "m",
    0: "",
    3: "k",
    6: "M",
    9: "G",
    12: "T",
    15: "P",
    18: "E",
}
_QUANTITY_RE = re.compile(r"^([+-]?\d+(?:\.\d+)?|[+-]?\.\d+)(Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E|)$")


@total_ordering
@dataclass(frozen=True, eq=False)
class Quantity:
    """An exact resource amount that prints in canonical Kubernetes form."""

    amount: Union[Fraction, int] = Fraction(0)
    format: QuantityFormat = QuantityFormat.DECIMAL_SI

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", Fraction(self.amount))

    @classmethod
    def parse(cls, text: str) -> "Quantity":
        """Parse a quantity such as '750Mi', '100m' or '110'."""
        match = _QUANTITY_RE.match(text.strip())
        if match is None:
            raise ValueError(f"quantities must match the regular expression: {text!r}")
        number, suffix = match.groups()
        base = Fraction(number)
        if suffix in _BINARY_SUFFIXES and suffix:
            power = _BINARY_SUFFIXES.index(suffix)
            return cls(base * 1024**power, QuantityFormat.BINARY_SI)
        exponent = next(exp for exp, sfx in _DECIMAL_SUFFIXES.items() if sfx == suffix)
        return cls(base * Fraction(10) ** exponent, QuantityFormat.DECIMAL_SI)

    @classmethod
    def scaled(cls, value: int, exponent: int) -> "Quantity":
        """Return value * 10**exponent in decimal form."""
        return cls(Fraction(value) * Fraction(10) ** exponent, QuantityFormat.DECIMAL_SI)

    def value(self) -> int:
        """The amount rounded up to a whole number."""
        return math.ceil(self.amount)

    def milli_value(self) -> int:
        """The amount in thousandths, rounded up."""
        return math.ceil(self.amount * 1000)

    def __sub__(self, other: "Quantity") -> "Quantity":
        return Quantity(self.amount - other.amount, self.format)

    def __add__(self, other: "Quantity") -> "Quantity":
        return Quantity(self.amount + other.amount, self.format)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self.amount == other.amount

    def __lt__(self, other: "Quantity") -> bool:
        return self.amount < other.amount

    def __hash__(self) -> int:
        return hash(self.amount)

    def __str__(self) -> str:
        amount = self.amount
        if amount == 0:
            return "0"
        if amount < 0:
            return "-" + str(Quantity(-amount, self.format))
        if self.format is QuantityFormat.BINARY_SI and amount.denominator == 1:
            number = amount.numerator
            for power in range(len(_BINARY_SUFFIXES) - 1, -1, -1):
                unit = 1024**power
                if number % unit == 0:
                    return f"{number // unit}{_BINARY_SUFFIXES[power]}"
        for exponent in sorted(_DECIMAL_SUFFIXES, reverse=True):
            mantissa = amount / Fraction(10) ** exponent
            if mantissa.denominator == 1:
                return f"{mantissa.numerator}{_DECIMAL_SUFFIXES[exponent]}"
        return f"{math.ceil(amount * 10**9)}n"


@dataclass
class VMSize:
    """The parts of a parsed VM size name."""

    family: str
    subfamily: Optional[str] = None
    cpus: str = ""
    cpus_constrained: Optional[str] = None
    additive_features: List[str] = field(default_factory=list)
    accelerator_type: Optional[str] = None
    version: str = ""
    promo_version: str = ""
    series: str = ""


def _truthy(value: str) -> bool:
    return value.strip().lower() == "true"


@dataclass
class SKU:
    """A VM SKU with its capabilities and zone availability per location."""

    name: str
    size: str = ""
    capabilities: Dict[str, str] = field(default_factory=dict)
    zones: Dict[str, List[str]] = field(default_factory=dict)
    vm_size: Optional[VMSize] = None

    def _capability(self, key: str) -> str:
        try:
            return self.capabilities[key]
        except KeyError:
            raise KeyError(f"{key}CapabilityNotFound") from None

    def _int_capability(self, key: str) -> int:
        raw = self._capability(key)
        try:
            return int(raw)
        except ValueError as err:
            raise ValueError(f"{key}CapabilityValueParse: {raw!r}") from err

    def _has(self, key: str) -> bool:
        return _truthy(self.capabilities.get(key, ""))

    def vcpu(self) -> int:
        return self._int_capability("vCPUs")

    def memory(self) -> float:
        """Memory in GiB (the capability is named MemoryGB but holds GiB)."""
        raw = self._capability("MemoryGB")
        try:
            return float(raw)
        except ValueError as err:
            raise ValueError(f"MemoryGBCapabilityValueParse: {raw!r}") from err

    def gpu(self) -> int:
        return self._int_capability("GPUs")

    def max_cached_disk_bytes(self) -> int:
        return self._int_capability("CachedDiskBytes")

    def max_resource_volume_mb(self) -> int:
        return self._int_capability("MaxResourceVolumeMB")

    def cpu_architecture(self) -> str:
        return self._capability("CpuArchitectureType")

    def is_premium_io(self) -> bool:
        return self._has("PremiumIO")

    def is_encryption_at_host_supported(self) -> bool:
        return self._has("EncryptionAtHostSupported")

    def is_ephemeral_os_disk_supported(self) -> bool:
        return self._has("EphemeralOSDiskSupported")

    def is_accelerated_networking_supported(self) -> bool:
        return self._has("AcceleratedNetworkingEnabled")

    def _hyperv_generations(self) -> List[str]:
        raw = self.capabilities.get("HyperVGenerations", "")
        return [part.strip().upper() for part in raw.split(",") if part.strip()]

    def is_hyperv_gen1_supported(self) -> bool:
        return "V1" in self._hyperv_generations()

    def is_hyperv_gen2_supported(self) -> bool:
        return "V2" in self._hyperv_generations()

    def availability_zones(self, region: str) -> FrozenSet[str]:
        """Zone numbers where the SKU is offered in the given location."""
        wanted = region.lower()
        return frozenset(
            zone
            for location, zones in self.zones.items()
            if location.lower() == wanted
            for zone in zones
        )

    def get_vm_size(self) -> VMSize:
        if self.vm_size is None:
            raise ValueError(f"parsing VM size {self.size}")
        return self.vm_size


@dataclass
class KubeletConfiguration:
    """The kubelet settings that affect instance capacity."""

    max_pods: Optional[int] = None
    pods_per_core: Optional[int] = None


ResourceList = Dict[str, Quantity]


def kube_reserved_resources(vcpus: int, memory_gib: float) -> ResourceList:
    """CPU and memory AKS reserves for Kubernetes daemons."""
    reserved_memory_mi = int(1024 * RESERVED_MEMORY_TAX_GI.calculate(memory_gib))
    reserved_cpu_milli = int(1000 * RESERVED_CPU_TAX_VCPU.calculate(float(vcpus)))
    return {
        RESOURCE_CPU: Quantity.scaled(reserved_cpu_milli, -3),
        RESOURCE_MEMORY: Quantity(reserved_memory_mi * 1024 * 1024, QuantityFormat.BINARY_SI),
    }


def system_reserved_resources() -> ResourceList:
    """AKS sets no system-reserved values."""
    return {RESOURCE_CPU: Quantity(), RESOURCE_MEMORY: Quantity()}


def eviction_threshold() -> ResourceList:
    return {RESOURCE_MEMORY: Quantity.parse(DEFAULT_MEMORY_AVAILABLE)}


def gpu_nvidia_count(sku: SKU) -> Quantity:
    """Number of NVIDIA GPUs; zero unless the SKU has NVIDIA driver support."""
    try:
        count = sku.gpu()
    except (KeyError, ValueError):
        count = 0
    if not is_nvidia_enabled_sku(sku.name):
        count = 0
    return Quantity(count)


def memory_mib(sku: SKU) -> int:
    return int(sku.memory() * 1024)


def _memory(sku: SKU, vm_memory_overhead_percent: float) -> Quantity:
    memory = Quantity.parse(f"{int(sku.memory())}Gi")
    overhead_mi = math.ceil(float(memory.value()) * vm_memory_overhead_percent / 1024 / 1024)
    return memory - Quantity.parse(f"{overhead_mi}Mi")


def pods(sku: SKU, kubelet: Optional[KubeletConfiguration]) -> Quantity:
    """Pod capacity: max pods (default 110), capped by pods-per-core times vCPUs."""
    if kubelet is not None and kubelet.max_pods is not None:
        count = kubelet.max_pods
    else:
        count = DEFAULT_MAX_PODS
    if kubelet is not None and (kubelet.pods_per_core or 0) > 0:
        count = min(kubelet.pods_per_core * sku.vcpu(), count)
    return Quantity(count)


def sku_version(vm_size: VMSize) -> Optional[str]:
    """SKU version label: 'v' prefix dropped, '1' when absent, None if malformed."""
    if not vm_size.version:
        return "1"
    if vm_size.version[0] not in ("v", "V"):
        return None
    return vm_size.version[1:]


def compute_capacity(
    sku: SKU,
    kubelet: Optional[KubeletConfiguration],
    os_disk_size_gb: int,
    vm_memory_overhead_percent: float,
) -> ResourceList:
    """Resource capacity of a node of this SKU."""
    return {
        RESOURCE_CPU: Quantity(sku.vcpu()),
        RESOURCE_MEMORY: _memory(sku, vm_memory_overhead_percent),
        RESOURCE_EPHEMERAL_STORAGE: Quantity.scaled(os_disk_size_gb, 9),
        RESOURCE_PODS: pods(sku, kubelet),
        RESOURCE_NVIDIA_GPU: gpu_nvidia_count(sku),
    }