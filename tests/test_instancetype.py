import pytest

from aksprovision.instancetype import (
    KubeletConfiguration,
    Quantity,
    QuantityFormat,
    SKU,
    TaxBracket,
    TaxBrackets,
    VMSize,
    compute_capacity,
    eviction_threshold,
    gpu_nvidia_count,
    kube_reserved_resources,
    memory_mib,
    pods,
    sku_version,
    system_reserved_resources,
)


def _d2_v2():
    return SKU(
        name="Standard_D2_v2",
        size="D2_v2",
        capabilities={"vCPUs": "2", "MemoryGB": "7", "HyperVGenerations": "V1"},
        zones={"westus2": ["1", "2", "3"]},
        vm_size=VMSize(family="D", cpus="2", version="v2"),
    )


def _nc24_a100():
    return SKU(
        name="Standard_NC24ads_A100_v4",
        size="NC24ads_A100_v4",
        capabilities={"vCPUs": "24", "MemoryGB": "220", "GPUs": "1", "HyperVGenerations": "V2"},
        vm_size=VMSize(family="NC", cpus="24", accelerator_type="A100", version="v4"),
    )


@pytest.mark.parametrize(
    "cpus,memory,expected_cpu,expected_memory",
    [
        (4, 7.0, "140m", "1638Mi"),
        (2, 8.0, "100m", "1843Mi"),
        (3, 64.0, "120m", "5611Mi"),
    ],
)
def test_kube_reserved_resources(cpus, memory, expected_cpu, expected_memory):
    resources = kube_reserved_resources(cpus, memory)
    assert str(resources["cpu"]) == expected_cpu
    assert str(resources["memory"]) == expected_memory


def test_tax_brackets_partial_amount():
    brackets = TaxBrackets((TaxBracket(10, 0.5), TaxBracket(20, 0.1)))
    assert brackets.calculate(4) == pytest.approx(2.0)
    assert brackets.calculate(15) == pytest.approx(5.5)
    assert brackets.calculate(0) == 0


def test_system_reserved_is_zero():
    reserved = system_reserved_resources()
    assert str(reserved["cpu"]) == "0"
    assert str(reserved["memory"]) == "0"


def test_eviction_threshold():
    assert str(eviction_threshold()["memory"]) == "750Mi"
    assert eviction_threshold()["memory"].value() == 750 * 1024 * 1024


@pytest.mark.parametrize(
    "text,canonical",
    [("750Mi", "750Mi"), ("100m", "100m"), ("110", "110"), ("2048", "2048"), ("1.5", "1500m"), ("7Gi", "7Gi")],
)
def test_quantity_parse_round_trip(text, canonical):
    assert str(Quantity.parse(text)) == canonical


def test_quantity_binary_format_promotes_suffix():
    assert str(Quantity(2048, QuantityFormat.BINARY_SI)) == "2Ki"
    assert str(Quantity(1536, QuantityFormat.BINARY_SI)) == "1536"


def test_quantity_invalid():
    with pytest.raises(ValueError):
        Quantity.parse("lots")


def test_quantity_equality_ignores_format():
    assert Quantity.parse("1Gi") == Quantity(1024**3)
    assert Quantity.parse("1Ki") > Quantity.parse("1k")


def test_requirement_values_from_sku():
    assert memory_mib(_d2_v2()) == 7 * 1024
    assert memory_mib(_nc24_a100()) == 220 * 1024
    assert sku_version(_d2_v2().get_vm_size()) == "2"
    assert sku_version(_nc24_a100().get_vm_size()) == "4"


def test_sku_version_defaults_and_malformed():
    assert sku_version(VMSize(family="A")) == "1"
    assert sku_version(VMSize(family="A", version="x2")) is None


def test_gpu_counts():
    assert gpu_nvidia_count(_nc24_a100()).value() == 1
    assert gpu_nvidia_count(_d2_v2()).value() == 0
    unsupported = SKU(name="Standard_NV4as_v4", capabilities={"GPUs": "1"})
    assert gpu_nvidia_count(unsupported).value() == 0


def test_capacity_without_overhead():
    normal = compute_capacity(_d2_v2(), KubeletConfiguration(), 128, 0)
    gpu = compute_capacity(_nc24_a100(), KubeletConfiguration(), 128, 0)
    assert normal["cpu"].value() == 2
    assert gpu["cpu"].value() == 24
    assert normal["memory"].value() == 7 * 1024 * 1024 * 1024
    assert gpu["memory"].value() == 220 * 1024 * 1024 * 1024
    assert normal["nvidia.com/gpu"].value() == 0
    assert gpu["nvidia.com/gpu"].value() == 1
    assert normal["ephemeral-storage"].value() == 128 * 10**9
    assert str(normal["ephemeral-storage"]) == "128G"
    assert set(normal) == {"cpu", "memory", "ephemeral-storage", "pods", "nvidia.com/gpu"}


def test_capacity_with_memory_overhead():
    capacity = compute_capacity(_d2_v2(), None, 128, 0.075)
    assert str(capacity["memory"]) == "6630Mi"


def test_pods():
    assert pods(_d2_v2(), None).value() == 110
    assert pods(_d2_v2(), KubeletConfiguration(pods_per_core=110)).value() == 110
    assert pods(_d2_v2(), KubeletConfiguration(max_pods=15, pods_per_core=110)).value() == 15
    assert pods(_d2_v2(), KubeletConfiguration(pods_per_core=3)).value() == 6


def test_sku_capabilities():
    sku = SKU(
        name="Standard_D64s_v3",
        capabilities={
            "PremiumIO": "True",
            "EphemeralOSDiskSupported": "False",
            "HyperVGenerations": "V1,V2",
        },
        zones={"WestUS2": ["1", "2"]},
    )
    assert sku.is_premium_io() is True
    assert sku.is_ephemeral_os_disk_supported() is False
    assert sku.is_hyperv_gen1_supported() and sku.is_hyperv_gen2_supported()
    assert sku.availability_zones("westus2") == frozenset({"1", "2"})
    with pytest.raises(KeyError):
        sku.vcpu()
    with pytest.raises(ValueError):
        sku.get_vm_size()