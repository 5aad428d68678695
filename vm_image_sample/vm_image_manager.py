#!/usr/bin/env python3
"""
Azure Compute sample: create VMs from a captured image or a specialized VHD

Walks through the lifecycle of a Linux VM image:
- Create a Linux VM from a platform image (unmanaged OS disk)
- Install Apache with the custom script extension
- Deprovision the guest agent, deallocate and generalize the VM
- Capture the VM to get a generalized image
- Create a second VM from the captured image, then delete it
- Create a third VM by attaching the OS disk VHD of the deleted VM
- Delete every resource created along the way

Requirements:
- A service principal exported as CLIENT_ID, CLIENT_SECRET, TENANT_ID and
  SUBSCRIPTION_ID (environment or .env file)
- Python packages: azure-identity, azure-mgmt-compute, azure-mgmt-network,
  azure-mgmt-resource, azure-mgmt-storage, paramiko, python-dotenv, pyyaml
"""

import os
import sys
import time
import logging
import argparse
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

import yaml
from dotenv import load_dotenv

# Azure SDK imports
try:
    from azure.identity import ClientSecretCredential
    from azure.mgmt.compute import ComputeManagementClient
    from azure.mgmt.resource import ResourceManagementClient
    from azure.mgmt.network import NetworkManagementClient
    from azure.mgmt.storage import StorageManagementClient
    from azure.mgmt.compute.models import (
        VirtualMachine, HardwareProfile, StorageProfile, OSDisk, ImageReference,
        NetworkProfile, OSProfile, LinuxConfiguration, NetworkInterfaceReference,
        VirtualHardDisk, DiskCreateOptionTypes, CachingTypes, OperatingSystemTypes,
        VirtualMachineExtension, VirtualMachineCaptureParameters
    )
    from azure.mgmt.network.models import (
        NetworkInterface, NetworkInterfaceIPConfiguration,
        PublicIPAddress, PublicIPAddressDnsSettings, PublicIPAddressSku,
        NetworkSecurityGroup, SecurityRule, VirtualNetwork, AddressSpace, Subnet
    )
    from azure.mgmt.storage.models import (
        StorageAccountCreateParameters, Sku, SkuName, Kind
    )
except ImportError as e:
    print(f"Error: Missing required Azure SDK packages ({e}). Install with:")
    print("pip install azure-identity azure-mgmt-compute azure-mgmt-network azure-mgmt-resource azure-mgmt-storage paramiko python-dotenv pyyaml")
    sys.exit(1)

from vm_image_sample import utilities
from vm_image_sample.utilities import format_duration


DEFAULT_SCRIPT_URIS = [
    "https://raw.githubusercontent.com/Azure/azure-libraries-for-net/master/Samples/Asset/install_apache.sh"
]
DEFAULT_INSTALL_COMMAND = "bash install_apache.sh"

logger = logging.getLogger(__name__)


def load_secrets(env_file: str = '.env') -> Dict[str, Optional[str]]:
    """Load service principal and admin credentials from the environment (and env_file)"""
    if os.path.exists(env_file):
        load_dotenv(env_file)

    return {
        'client_id': os.getenv('CLIENT_ID'),
        'client_secret': os.getenv('CLIENT_SECRET'),
        'tenant_id': os.getenv('TENANT_ID'),
        'subscription_id': os.getenv('SUBSCRIPTION_ID'),
        'admin_username': os.getenv('ADMIN_USERNAME'),
        'admin_password': os.getenv('ADMIN_PASSWORD'),
    }


def load_config(config_file: str = 'config.yaml') -> Dict:
    """Load configuration from a YAML file"""
    if os.path.exists(config_file):
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"{config_file} must contain a YAML mapping")
        return config_data
    else:
        logger.warning(f"{config_file} not found. Using default configuration.")
        return {}


def setup_logging(log_dir: str = 'var/logs', verbose: bool = False):
    """Log to stdout and to var/logs/vm_image_sample.log"""
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(log_dir, 'vm_image_sample.log')),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Reduce Azure SDK logging verbosity
    logging.getLogger('azure').setLevel(logging.WARNING)
    logging.getLogger('azure.core.pipeline.policies.http_logging_policy').setLevel(logging.WARNING)
    logging.getLogger('azure.mgmt').setLevel(logging.WARNING)
    logging.getLogger('azure.identity').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('paramiko').setLevel(logging.WARNING)


@dataclass
class AzureCredentials:
    """Service principal used to authenticate against Azure Resource Manager"""
    client_id: str
    client_secret: str
    tenant_id: str
    subscription_id: str

    @classmethod
    def from_environment(cls, env_file: str = '.env') -> 'AzureCredentials':
        secrets_data = load_secrets(env_file)
        required = {
            'CLIENT_ID': secrets_data['client_id'],
            'CLIENT_SECRET': secrets_data['client_secret'],
            'TENANT_ID': secrets_data['tenant_id'],
            'SUBSCRIPTION_ID': secrets_data['subscription_id'],
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing environment variables: {', '.join(missing)}")

        return cls(
            client_id=secrets_data['client_id'],
            client_secret=secrets_data['client_secret'],
            tenant_id=secrets_data['tenant_id'],
            subscription_id=secrets_data['subscription_id'],
        )

    def get_credential(self) -> ClientSecretCredential:
        return ClientSecretCredential(self.tenant_id, self.client_id, self.client_secret)


@dataclass
class SampleConfig:
    """Sample Configuration Parameters"""
    location: str = None
    vm_size: str = None
    image_publisher: str = None
    image_offer: str = None
    image_sku: str = None
    image_version: str = None
    vnet_address_prefix: str = None
    extension_name: str = None
    extension_publisher: str = None
    extension_type: str = None
    extension_version: str = None
    script_uris: List[str] = None
    install_command: str = None
    capture_container: str = None
    capture_vhd_prefix: str = None
    ssh_port: int = None
    admin_username: str = None
    admin_password: str = None
    tags: Dict[str, str] = None
    config_file: str = 'config.yaml'
    env_file: str = '.env'

    def __post_init__(self):
        config_data = load_config(self.config_file)
        secrets_data = load_secrets(self.env_file)

        self.location = self.location or config_data.get('location', 'westus')
        self.vm_size = self.vm_size or config_data.get('vm_size', 'Standard_D2a_v4')

        # Linux platform image (Gen1, required for unmanaged OS disks)
        image = config_data.get('image') or {}
        self.image_publisher = self.image_publisher or image.get('publisher', 'Canonical')
        self.image_offer = self.image_offer or image.get('offer', '0001-com-ubuntu-server-jammy')
        self.image_sku = self.image_sku or image.get('sku', '22_04-lts')
        self.image_version = self.image_version or image.get('version', 'latest')

        self.vnet_address_prefix = self.vnet_address_prefix or config_data.get('vnet_address_prefix', '10.0.0.0/28')

        extension = config_data.get('extension') or {}
        self.extension_name = self.extension_name or extension.get('name', 'CustomScript')
        self.extension_publisher = self.extension_publisher or extension.get('publisher', 'Microsoft.Azure.Extensions')
        self.extension_type = self.extension_type or extension.get('type', 'CustomScript')
        self.extension_version = self.extension_version or extension.get('version', '2.1')
        self.script_uris = self.script_uris or extension.get('script_uris', list(DEFAULT_SCRIPT_URIS))
        self.install_command = self.install_command or extension.get('command', DEFAULT_INSTALL_COMMAND)

        capture = config_data.get('capture') or {}
        self.capture_container = self.capture_container or capture.get('container', 'capturedvhds')
        self.capture_vhd_prefix = self.capture_vhd_prefix or capture.get('vhd_prefix', 'img')

        self.ssh_port = self.ssh_port or config_data.get('ssh_port', 22)

        # Credentials: explicit > .env/environment > generated
        self.admin_username = (self.admin_username or secrets_data['admin_username']
                               or utilities.create_username())
        self.admin_password = (self.admin_password or secrets_data['admin_password']
                               or utilities.create_password())

        if self.tags is None:
            self.tags = config_data.get('tags') or {
                'sample': 'vm-image-capture',
            }


@dataclass
class SampleRun:
    """Transient handles to the resources created by one run of the sample"""
    resource_group: Optional[str] = None
    storage_account: Optional[str] = None
    blob_endpoint: Optional[str] = None
    vm_ids: Dict[str, str] = field(default_factory=dict)
    public_ip_fqdn: Optional[str] = None
    power_state: Optional[str] = None
    captured_image_uri: Optional[str] = None
    specialized_vhd_uri: Optional[str] = None
    capture_result: Optional[Dict] = None


class VMImageSampleManager:
    """Drives the capture / recreate walkthrough against Azure Resource Manager"""

    def __init__(self, credentials: AzureCredentials, config: SampleConfig, credential=None):
        self.subscription_id = credentials.subscription_id
        self.config = config
        self.credential = credential or credentials.get_credential()

        # Initialize Azure clients
        self.compute_client = ComputeManagementClient(
            self.credential, self.subscription_id
        )
        self.resource_client = ResourceManagementClient(
            self.credential, self.subscription_id
        )
        self.network_client = NetworkManagementClient(
            self.credential, self.subscription_id
        )
        self.storage_client = StorageManagementClient(
            self.credential, self.subscription_id
        )

        self.run = SampleRun()
        self.logger = logging.getLogger(__name__)

    def validate_configuration(self):
        """Check configuration and Azure connectivity before creating resources"""
        self.logger.info("🔍 Validating configuration...")

        if not self.config.admin_username or not self.config.admin_password:
            raise ValueError("Missing admin credentials")

        if not self.config.location:
            raise ValueError("Location cannot be empty")

        # Touch the subscription once so bad credentials fail before anything is created
        next(iter(self.resource_client.resource_groups.list()), None)
        self.logger.info("✅ Azure connectivity validated")

    def _log_operation_start(self, operation: str) -> float:
        """Log operation start and return start time"""
        start_time = time.time()
        self.logger.info(f"🚀 Starting {operation} at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        return start_time

    def _log_operation_end(self, operation: str, start_time: float):
        """Log operation completion with duration"""
        duration = time.time() - start_time
        self.logger.info(f"✅ {operation} completed in {format_duration(duration)}")

    def _get_resource_names(self, vm_name: str) -> Dict[str, str]:
        """Generate network resource names for a VM"""
        return {
            'vnet_name': f"{vm_name}-vnet",
            'subnet_name': 'subnet1',
            'nsg_name': f"{vm_name}-nsg",
            'pip_name': f"{vm_name}-pip",
            'nic_name': f"{vm_name}-nic",
            'os_disk_name': f"{vm_name}-osdisk",
        }

    def create_resource_group(self, rg_name: str) -> str:
        """Create the resource group that holds every resource of the sample"""
        self.logger.info(f"Creating resource group {rg_name}")
        rg_params = {
            'location': self.config.location,
            'tags': self.config.tags
        }
        self.resource_client.resource_groups.create_or_update(rg_name, rg_params)
        self.run.resource_group = rg_name
        self.logger.info(f"Resource group {rg_name} created")
        return rg_name

    def create_storage_account(self, rg_name: str, storage_name: str) -> str:
        """Create the storage account for unmanaged VHDs and return its blob endpoint"""
        self.logger.info(f"Creating storage account: {storage_name}")

        storage_params = StorageAccountCreateParameters(
            sku=Sku(name=SkuName.STANDARD_LRS),
            kind=Kind.STORAGE_V2,
            location=self.config.location,
            tags=self.config.tags
        )

        operation = self.storage_client.storage_accounts.begin_create(
            rg_name, storage_name, storage_params
        )
        result = operation.result()
        blob_endpoint = result.primary_endpoints.blob
        if not blob_endpoint.endswith('/'):
            blob_endpoint += '/'

        self.run.storage_account = storage_name
        self.run.blob_endpoint = blob_endpoint
        self.logger.info(f"Storage account created: {storage_name} ({blob_endpoint})")
        return blob_endpoint

    def create_network_infrastructure(self, rg_name: str, vm_name: str,
                                      public_ip_dns_label: Optional[str] = None) -> Tuple[str, Optional[str]]:
        """
        Create VNet, subnet, NSG, network interface and, when a DNS label is
        given, a public IP for one VM.

        Returns:
            (network interface id, public IP FQDN or None)
        """
        names = self._get_resource_names(vm_name)
        prefix = self.config.vnet_address_prefix

        self.logger.info(f"Creating virtual network {names['vnet_name']} ({prefix})")
        vnet_params = VirtualNetwork(
            location=self.config.location,
            address_space=AddressSpace(address_prefixes=[prefix]),
            subnets=[
                Subnet(
                    name=names['subnet_name'],
                    address_prefix=prefix
                )
            ],
            tags=self.config.tags
        )
        vnet_result = self.network_client.virtual_networks.begin_create_or_update(
            rg_name, names['vnet_name'], vnet_params
        ).result()

        nsg_params = NetworkSecurityGroup(
            location=self.config.location,
            security_rules=[
                SecurityRule(
                    name='AllowSSH',
                    protocol='Tcp',
                    source_address_prefix='*',
                    source_port_range='*',
                    destination_address_prefix='*',
                    destination_port_range=str(self.config.ssh_port),
                    access='Allow',
                    direction='Inbound',
                    priority=1000
                ),
                SecurityRule(
                    name='AllowHTTP',
                    protocol='Tcp',
                    source_address_prefix='*',
                    source_port_range='*',
                    destination_address_prefix='*',
                    destination_port_range='80',
                    access='Allow',
                    direction='Inbound',
                    priority=1001
                )
            ],
            tags=self.config.tags
        )
        nsg_result = self.network_client.network_security_groups.begin_create_or_update(
            rg_name, names['nsg_name'], nsg_params
        ).result()

        ip_configuration = NetworkInterfaceIPConfiguration(
            name='ipconfig1',
            subnet=Subnet(id=vnet_result.subnets[0].id),
            private_ip_allocation_method='Dynamic'
        )

        fqdn = None
        if public_ip_dns_label:
            self.logger.info(f"Creating public IP {names['pip_name']} with DNS label {public_ip_dns_label}")
            pip_params = PublicIPAddress(
                location=self.config.location,
                sku=PublicIPAddressSku(name='Standard'),
                public_ip_allocation_method='Static',
                dns_settings=PublicIPAddressDnsSettings(domain_name_label=public_ip_dns_label),
                tags=self.config.tags
            )
            pip_result = self.network_client.public_ip_addresses.begin_create_or_update(
                rg_name, names['pip_name'], pip_params
            ).result()
            ip_configuration.public_ip_address = PublicIPAddress(id=pip_result.id)
            fqdn = pip_result.dns_settings.fqdn if pip_result.dns_settings else None

        nic_params = NetworkInterface(
            location=self.config.location,
            ip_configurations=[ip_configuration],
            network_security_group=NetworkSecurityGroup(id=nsg_result.id),
            tags=self.config.tags
        )
        nic_result = self.network_client.network_interfaces.begin_create_or_update(
            rg_name, names['nic_name'], nic_params
        ).result()

        self.logger.info(f"Network infrastructure for {vm_name} created: {nic_result.id}")
        return nic_result.id, fqdn

    def _vhd_uri(self, vm_name: str) -> str:
        return f"{self.run.blob_endpoint}vhds/{vm_name}-osdisk.vhd"

    def _build_vm_params(self, vm_name: str, nic_id: str, storage_profile: StorageProfile,
                         with_os_profile: bool = True) -> VirtualMachine:
        vm_params = VirtualMachine(
            location=self.config.location,
            hardware_profile=HardwareProfile(
                vm_size=self.config.vm_size
            ),
            storage_profile=storage_profile,
            network_profile=NetworkProfile(
                network_interfaces=[
                    NetworkInterfaceReference(id=nic_id, primary=True)
                ]
            ),
            tags=self.config.tags
        )

        if with_os_profile:
            vm_params.os_profile = OSProfile(
                computer_name=vm_name,
                admin_username=self.config.admin_username,
                admin_password=self.config.admin_password,
                linux_configuration=LinuxConfiguration(
                    disable_password_authentication=False,
                    provision_vm_agent=True
                )
            )

        return vm_params

    def _create_vm(self, rg_name: str, vm_name: str, vm_params: VirtualMachine) -> VirtualMachine:
        vm_start = self._log_operation_start(f"VM '{vm_name}' provisioning")
        self.logger.info("🖥️ Submitting VM creation request...")
        vm_operation = self.compute_client.virtual_machines.begin_create_or_update(
            rg_name, vm_name, vm_params
        )
        self.logger.info("⏳ Waiting for VM provisioning to complete...")
        vm_result = vm_operation.result()
        self.run.vm_ids[vm_name] = vm_result.id
        self._log_operation_end(f"VM '{vm_name}' provisioning", vm_start)
        return vm_result

    def create_linux_vm_from_platform_image(self, rg_name: str, vm_name: str, nic_id: str) -> VirtualMachine:
        """Create a Linux VM from a platform image with an unmanaged OS disk"""
        names = self._get_resource_names(vm_name)
        self.logger.info(f"Creating a Linux VM {vm_name} from "
                         f"{self.config.image_publisher}:{self.config.image_offer}:{self.config.image_sku}")

        storage_profile = StorageProfile(
            image_reference=ImageReference(
                publisher=self.config.image_publisher,
                offer=self.config.image_offer,
                sku=self.config.image_sku,
                version=self.config.image_version
            ),
            os_disk=OSDisk(
                name=names['os_disk_name'],
                vhd=VirtualHardDisk(uri=self._vhd_uri(vm_name)),
                create_option=DiskCreateOptionTypes.FROM_IMAGE,
                caching=CachingTypes.READ_WRITE
            )
        )
        vm_result = self._create_vm(rg_name, vm_name, self._build_vm_params(vm_name, nic_id, storage_profile))
        self.logger.info(f"Created a Linux VM: {vm_result.id}")
        return vm_result

    def install_custom_script_extension(self, rg_name: str, vm_name: str) -> VirtualMachineExtension:
        """Install the custom script extension that sets up Apache"""
        self.logger.info("🔧 Deploying custom script extension to VM...")
        self.logger.info(f"   - VM Name: {vm_name}")
        self.logger.info(f"   - Extension: {self.config.extension_publisher}/{self.config.extension_type} "
                         f"{self.config.extension_version}")
        self.logger.info(f"   - Command: {self.config.install_command}")

        extension_params = VirtualMachineExtension(
            location=self.config.location,
            publisher=self.config.extension_publisher,
            type_properties_type=self.config.extension_type,
            type_handler_version=self.config.extension_version,
            auto_upgrade_minor_version=True,
            settings={
                'fileUris': self.config.script_uris,
                'commandToExecute': self.config.install_command
            }
        )

        extension_operation = self.compute_client.virtual_machine_extensions.begin_create_or_update(
            rg_name, vm_name, self.config.extension_name, extension_params
        )
        self.logger.info("⏳ Waiting for extension deployment...")
        extension_result = extension_operation.result()
        self.logger.info(f"📦 Extension deployment completed: {extension_result.provisioning_state}")
        return extension_result

    def print_virtual_machine(self, vm: VirtualMachine):
        self.logger.info(utilities.format_virtual_machine(vm))

    def deprovision_vm(self, fqdn: str):
        """Deprovision the Linux guest agent so the VM can be generalized"""
        if not fqdn:
            raise ValueError("VM has no public IP FQDN; cannot connect to deprovision the guest agent")
        utilities.deprovision_agent_in_linux_vm(
            fqdn, self.config.ssh_port, self.config.admin_username, self.config.admin_password
        )

    def get_power_state(self, rg_name: str, vm_name: str) -> str:
        """Return the PowerState of a VM (e.g. 'running', 'deallocated')"""
        instance_view = self.compute_client.virtual_machines.instance_view(rg_name, vm_name)
        for status in instance_view.statuses or []:
            if status.code and status.code.startswith('PowerState/'):
                return status.code.split('/', 1)[1]
        return 'unknown'

    def deallocate_vm(self, rg_name: str, vm_name: str) -> str:
        self.logger.info(f"Deallocate VM: {vm_name}")
        self.compute_client.virtual_machines.begin_deallocate(rg_name, vm_name).result()
        power_state = self.get_power_state(rg_name, vm_name)
        self.run.power_state = power_state
        self.logger.info(f"Deallocated VM: {vm_name}; state = {power_state}")
        return power_state

    def generalize_vm(self, rg_name: str, vm_name: str):
        self.logger.info(f"Generalize VM: {vm_name}")
        self.compute_client.virtual_machines.generalize(rg_name, vm_name)
        self.logger.info(f"Generalized VM: {vm_name}")

    def capture_vm(self, rg_name: str, vm_name: str):
        """Capture a generalized VM into VHDs under the configured container and prefix"""
        self.logger.info(f"Capturing VM: {vm_name}")
        capture_params = VirtualMachineCaptureParameters(
            vhd_prefix=self.config.capture_vhd_prefix,
            destination_container_name=self.config.capture_container,
            overwrite_vhds=True
        )
        capture_result = self.compute_client.virtual_machines.begin_capture(
            rg_name, vm_name, capture_params
        ).result()
        self.run.capture_result = capture_result.as_dict() if hasattr(capture_result, 'as_dict') else capture_result
        self.logger.info(f"Captured VM: {vm_name}")
        return capture_result

    def create_linux_vm_from_captured_image(self, rg_name: str, vm_name: str, nic_id: str,
                                            image_uri: str) -> VirtualMachine:
        """Create a Linux VM from a captured (generalized) VHD image"""
        names = self._get_resource_names(vm_name)
        self.logger.info(f"Creating a Linux VM using captured image - {image_uri}")

        # A generalized image can also be an uploaded VHD prepared from an on-premise generalized VM
        storage_profile = StorageProfile(
            os_disk=OSDisk(
                name=names['os_disk_name'],
                os_type=OperatingSystemTypes.LINUX,
                image=VirtualHardDisk(uri=image_uri),
                vhd=VirtualHardDisk(uri=self._vhd_uri(vm_name)),
                create_option=DiskCreateOptionTypes.FROM_IMAGE,
                caching=CachingTypes.READ_WRITE
            )
        )
        return self._create_vm(rg_name, vm_name, self._build_vm_params(vm_name, nic_id, storage_profile))

    def create_linux_vm_from_specialized_vhd(self, rg_name: str, vm_name: str, nic_id: str,
                                             vhd_uri: str) -> VirtualMachine:
        """Create a Linux VM by attaching an existing specialized OS disk VHD"""
        names = self._get_resource_names(vm_name)
        self.logger.info(f"Creating a new Linux VM by attaching OS Disk vhd - {vhd_uri}")

        storage_profile = StorageProfile(
            os_disk=OSDisk(
                name=names['os_disk_name'],
                os_type=OperatingSystemTypes.LINUX,
                vhd=VirtualHardDisk(uri=vhd_uri),
                create_option=DiskCreateOptionTypes.ATTACH,
                caching=CachingTypes.READ_WRITE
            )
        )
        # New user credentials cannot be specified when attaching a specialized VHD
        vm_params = self._build_vm_params(vm_name, nic_id, storage_profile, with_os_profile=False)
        return self._create_vm(rg_name, vm_name, vm_params)

    def delete_vm(self, rg_name: str, vm_name: str):
        self.logger.info(f"🗑️ Deleting VM: {vm_name}")
        self.compute_client.virtual_machines.begin_delete(rg_name, vm_name).result()
        self.run.vm_ids.pop(vm_name, None)
        self.logger.info("Deleted VM")

    def delete_resource_group(self, rg_name: str):
        start = self._log_operation_start(f"resource group '{rg_name}' deletion")
        self.resource_client.resource_groups.begin_delete(rg_name).result()
        self._log_operation_end(f"Resource group '{rg_name}' deletion", start)

    def cleanup(self):
        """Delete the resource group of this run; errors are logged, not raised"""
        rg_name = self.run.resource_group
        if not rg_name:
            self.logger.info("Did not create any resources in Azure. No clean up is necessary")
            return

        try:
            self.logger.info(f"Deleting Resource Group: {rg_name}")
            self.delete_resource_group(rg_name)
            self.logger.info(f"Deleted Resource Group: {rg_name}")
        except Exception as e:
            self.logger.warning(f"⚠️  Could not delete resource group {rg_name}: {e}")

    def run_sample(self, capture_only: bool = False) -> SampleRun:
        """
        Run the whole walkthrough.

        Args:
            capture_only: stop after the VM has been captured

        Returns:
            The SampleRun with the handles collected along the way
        """
        overall_start = self._log_operation_start("VM image sample")

        rg_name = utilities.create_random_name("ComputeSampleRG", max_len=24)
        linux_vm_name1 = utilities.create_random_name("vm1-", max_len=12)
        linux_vm_name2 = utilities.create_random_name("vm2-", max_len=12)
        linux_vm_name3 = utilities.create_random_name("vm3-", max_len=12)
        public_ip_dns_label = utilities.create_random_name("pip", max_len=12)
        storage_name = utilities.create_storage_account_name("vhds")

        try:
            self.validate_configuration()
            self.create_resource_group(rg_name)
            self.create_storage_account(rg_name, storage_name)

            # Create a Linux VM using an image from the platform image repository
            nic_id, fqdn = self.create_network_infrastructure(rg_name, linux_vm_name1, public_ip_dns_label)
            self.run.public_ip_fqdn = fqdn
            linux_vm = self.create_linux_vm_from_platform_image(rg_name, linux_vm_name1, nic_id)
            self.install_custom_script_extension(rg_name, linux_vm_name1)
            # Re-read so the installed extension is listed
            linux_vm = self.compute_client.virtual_machines.get(rg_name, linux_vm_name1)
            self.print_virtual_machine(linux_vm)

            # De-provision, deallocate and generalize the virtual machine
            self.deprovision_vm(fqdn)
            self.deallocate_vm(rg_name, linux_vm_name1)
            self.generalize_vm(rg_name, linux_vm_name1)

            # Capture the virtual machine to get a 'Generalized image' with Apache
            capture_result = self.capture_vm(rg_name, linux_vm_name1)

            if capture_only:
                self.logger.info("Capture only mode, skipping VM recreation")
                return self.run

            # Create a Linux VM using captured image (Generalized image)
            captured_image_uri = utilities.find_captured_image_uri(capture_result)
            self.run.captured_image_uri = captured_image_uri

            nic_id2, _ = self.create_network_infrastructure(rg_name, linux_vm_name2)
            linux_vm2 = self.create_linux_vm_from_captured_image(rg_name, linux_vm_name2, nic_id2,
                                                                 captured_image_uri)
            self.print_virtual_machine(linux_vm2)

            specialized_vhd = linux_vm2.storage_profile.os_disk.vhd.uri
            self.run.specialized_vhd_uri = specialized_vhd

            # Delete the second VM; deallocation does not release the VHD lease
            self.delete_vm(rg_name, linux_vm_name2)

            # Create a Linux VM using 'specialized VHD' of the previous VM
            nic_id3, _ = self.create_network_infrastructure(rg_name, linux_vm_name3)
            linux_vm3 = self.create_linux_vm_from_specialized_vhd(rg_name, linux_vm_name3, nic_id3,
                                                                  specialized_vhd)
            self.print_virtual_machine(linux_vm3)

            return self.run
        finally:
            self.cleanup()
            self._log_operation_end("VM image sample", overall_start)


def main(argv=None):
    """Main CLI interface"""
    parser = argparse.ArgumentParser(
        description='Azure Compute sample: create VMs from a captured image or a specialized VHD'
    )
    parser.add_argument('--config', default='config.yaml',
                        help='YAML configuration file (default: config.yaml)')
    parser.add_argument('--env-file', default='.env',
                        help='dotenv file with CLIENT_ID, CLIENT_SECRET, TENANT_ID, SUBSCRIPTION_ID')
    parser.add_argument('--location',
                        help='Azure region (overrides config.yaml)')
    parser.add_argument('--vm-size',
                        help='VM size (overrides config.yaml)')
    parser.add_argument('--capture-only', action='store_true',
                        help='Stop after capturing the generalized image')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        # Authenticate
        credentials = AzureCredentials.from_environment(args.env_file)
        config = SampleConfig(
            location=args.location,
            vm_size=args.vm_size,
            config_file=args.config,
            env_file=args.env_file
        )
        manager = VMImageSampleManager(credentials, config)

        run = manager.run_sample(capture_only=args.capture_only)
    except Exception as e:
        logger.exception(f"❌ Error: {e}")
        return 1

    print("✅ Sample completed successfully!")
    if run.captured_image_uri:
        print(f"Captured image: {run.captured_image_uri}")
    if run.specialized_vhd_uri:
        print(f"Specialized VHD: {run.specialized_vhd_uri}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
