"""Shared pytest fixtures for all test modules."""

import copy
import os
from unittest.mock import MagicMock, patch

import pytest

from vm_image_sample.vm_image_manager import (
    AzureCredentials,
    SampleConfig,
    VMImageSampleManager,
)


ENV_VARS = (
    "CLIENT_ID",
    "CLIENT_SECRET",
    "TENANT_ID",
    "SUBSCRIPTION_ID",
    "ADMIN_USERNAME",
    "ADMIN_PASSWORD",
)

BLOB_ENDPOINT = "https://vhdsabc123.blob.core.windows.net/"

CAPTURED_IMAGE_URI = (
    "https://vhdsabc123.blob.core.windows.net/system/Microsoft.Compute/Images/"
    "capturedvhds/img-osDisk.0f1e2d3c-aaaa-bbbb-cccc-1234567890ab.vhd"
)

CAPTURE_RESULT = {
    "$schema": "http://schema.management.azure.com/schemas/2014-04-01-preview/VM_IP.json",
    "contentVersion": "1.0.0.0",
    "parameters": {"vmName": {"type": "string"}},
    "resources": [
        {
            "apiVersion": "2015-06-15",
            "name": "[parameters('vmName')]",
            "type": "Microsoft.Compute/virtualMachines",
            "location": "westus",
            "properties": {
                "hardwareProfile": {"vmSize": "Standard_D2a_v4"},
                "storageProfile": {
                    "osDisk": {
                        "osType": "Linux",
                        "name": "img-osDisk.0f1e2d3c-aaaa-bbbb-cccc-1234567890ab.vhd",
                        "createOption": "FromImage",
                        "image": {"uri": CAPTURED_IMAGE_URI},
                        "vhd": {"uri": "https://vhdsabc123.blob.core.windows.net/vmcontainer/osDisk.vhd"},
                        "caching": "ReadWrite",
                    }
                },
            },
        }
    ],
}


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run every test in a temp cwd with a private copy of the environment."""
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def credentials():
    return AzureCredentials(
        client_id="00000000-0000-0000-0000-000000000001",
        client_secret="test-secret",
        tenant_id="00000000-0000-0000-0000-000000000002",
        subscription_id="00000000-0000-0000-0000-000000000003",
    )


@pytest.fixture
def sample_config():
    return SampleConfig(
        admin_username="azureuser",
        admin_password="Sample-Passw0rd!",
    )


@pytest.fixture
def manager(credentials, sample_config):
    """Manager whose Azure management clients are MagicMocks."""
    with patch("vm_image_sample.vm_image_manager.ComputeManagementClient"), \
            patch("vm_image_sample.vm_image_manager.ResourceManagementClient"), \
            patch("vm_image_sample.vm_image_manager.NetworkManagementClient"), \
            patch("vm_image_sample.vm_image_manager.StorageManagementClient"):
        yield VMImageSampleManager(credentials, sample_config, credential=MagicMock())


def poller(result):
    """Return a mock LRO poller whose result() yields result."""
    return MagicMock(result=MagicMock(return_value=result))


@pytest.fixture
def wired_manager(manager):
    """Manager with mock clients returning realistic results for every step."""
    storage_account = MagicMock()
    storage_account.primary_endpoints.blob = BLOB_ENDPOINT
    manager.storage_client.storage_accounts.begin_create.return_value = poller(storage_account)

    vnet = MagicMock(subnets=[MagicMock(id="/subscriptions/sub/resourceGroups/rg/providers/"
                                           "Microsoft.Network/virtualNetworks/vnet/subnets/subnet1")])
    manager.network_client.virtual_networks.begin_create_or_update.return_value = poller(vnet)
    manager.network_client.network_security_groups.begin_create_or_update.return_value = poller(
        MagicMock(id="nsg-id"))
    pip = MagicMock(id="pip-id")
    pip.dns_settings.fqdn = "pipabc.westus.cloudapp.azure.com"
    manager.network_client.public_ip_addresses.begin_create_or_update.return_value = poller(pip)
    manager.network_client.network_interfaces.begin_create_or_update.return_value = poller(
        MagicMock(id="nic-id"))

    # Echo the submitted VM definition back as the created VM
    created_vms = {}

    def create_vm(rg_name, vm_name, params):
        created_vms[vm_name] = params
        return poller(params)

    manager.compute_client.virtual_machines.begin_create_or_update.side_effect = create_vm
    manager.compute_client.virtual_machines.get.side_effect = lambda rg_name, vm_name: created_vms[vm_name]
    manager.compute_client.virtual_machine_extensions.begin_create_or_update.return_value = poller(
        MagicMock(provisioning_state="Succeeded"))
    manager.compute_client.virtual_machines.instance_view.return_value = MagicMock(statuses=[
        MagicMock(code="ProvisioningState/succeeded"),
        MagicMock(code="PowerState/deallocated"),
    ])
    manager.compute_client.virtual_machines.begin_capture.return_value = poller(CAPTURE_RESULT)

    return manager


@pytest.fixture
def capture_result():
    return copy.deepcopy(CAPTURE_RESULT)


@pytest.fixture
def captured_image_uri():
    return CAPTURED_IMAGE_URI


@pytest.fixture
def blob_endpoint():
    return BLOB_ENDPOINT
