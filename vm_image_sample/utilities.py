"""
Helpers shared by the VM image sample: random resource names, generated
credentials, VM pretty-printing, capture result parsing and the SSH
deprovisioning step.
"""

import json
import logging
import random
import re
import secrets
import string
from typing import Any, Dict, List, Optional

import paramiko

logger = logging.getLogger(__name__)

DEPROVISION_COMMAND = "sudo -S waagent -deprovision+user --force"
SPECIAL_CHARACTERS = "!@#$%^&*()-_"


class CaptureResultError(Exception):
    """Raised when a capture result does not contain an image URI"""


class DeprovisionError(Exception):
    """Raised when the waagent deprovision command fails on the VM"""


def create_random_name(prefix: str, max_len: int = 24) -> str:
    """Append a random lowercase suffix to prefix, capped at max_len characters"""
    if len(prefix) >= max_len:
        return prefix[:max_len]
    suffix_len = min(8, max_len - len(prefix))
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=suffix_len))
    return f"{prefix}{suffix}"


def create_storage_account_name(prefix: str = "vhds") -> str:
    """Generate a storage account name (3-24 chars, lowercase letters and digits only)"""
    clean_name = re.sub(r'[^a-z0-9]', '', prefix.lower())
    if len(clean_name) < 3:
        clean_name = 'vhds'
    return create_random_name(clean_name[:16], max_len=24)


def create_username() -> str:
    return create_random_name("user", max_len=12)


def create_password(length: int = 16) -> str:
    """
    Generate an admin password that satisfies the Azure complexity rules.

    Azure requires 12-123 characters with at least three of: lowercase,
    uppercase, digit, special character. All four classes are always present.
    """
    length = max(length, 12)
    required = [
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.digits),
        secrets.choice(SPECIAL_CHARACTERS),
    ]
    alphabet = string.ascii_letters + string.digits + SPECIAL_CHARACTERS
    rest = [secrets.choice(alphabet) for _ in range(length - len(required))]
    chars = required + rest
    random.SystemRandom().shuffle(chars)
    return ''.join(chars)


def format_duration(seconds: float) -> str:
    """Format duration in a human-readable way"""
    if seconds < 60:
        return f"{seconds:.1f} seconds"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f} minutes ({seconds:.1f} seconds)"
    else:
        hours = seconds / 3600
        minutes = (seconds % 3600) / 60
        return f"{hours:.1f} hours, {minutes:.1f} minutes ({seconds:.1f} seconds)"


def _enum_value(value):
    return getattr(value, 'value', value)


def format_virtual_machine(vm) -> str:
    """Build a multi-line description of a compute VirtualMachine model"""
    lines = [
        "Virtual Machine:",
        f"  Id: {vm.id}",
        f"  Name: {vm.name}",
        f"  Location: {vm.location}",
        f"  Provisioning state: {vm.provisioning_state}",
    ]

    if vm.hardware_profile:
        lines.append(f"  Size: {vm.hardware_profile.vm_size}")

    storage_profile = vm.storage_profile
    if storage_profile:
        image = storage_profile.image_reference
        if image:
            lines.append(f"  Image: {image.publisher}:{image.offer}:{image.sku}:{image.version}")

        os_disk = storage_profile.os_disk
        if os_disk:
            lines.append("  OS disk:")
            lines.append(f"    Name: {os_disk.name}")
            lines.append(f"    OS type: {_enum_value(os_disk.os_type)}")
            lines.append(f"    Create option: {_enum_value(os_disk.create_option)}")
            lines.append(f"    Caching: {_enum_value(os_disk.caching)}")
            if os_disk.vhd:
                lines.append(f"    VHD: {os_disk.vhd.uri}")
            if os_disk.image:
                lines.append(f"    Source image VHD: {os_disk.image.uri}")
            if os_disk.managed_disk:
                lines.append(f"    Managed disk: {os_disk.managed_disk.id}")

        for data_disk in storage_profile.data_disks or []:
            lines.append(f"  Data disk: lun={data_disk.lun} name={data_disk.name}")

    os_profile = vm.os_profile
    if os_profile:
        lines.append("  OS profile:")
        lines.append(f"    Computer name: {os_profile.computer_name}")
        lines.append(f"    Admin user: {os_profile.admin_username}")

    network_profile = vm.network_profile
    if network_profile:
        for nic in network_profile.network_interfaces or []:
            lines.append(f"  Network interface: {nic.id}")

    for ext in vm.resources or []:
        lines.append(f"  Extension: {ext.name}")

    if vm.tags:
        lines.append(f"  Tags: {vm.tags}")

    return "\n".join(lines)


def _capture_resources(capture_result) -> List[Dict[str, Any]]:
    if isinstance(capture_result, str):
        capture_result = json.loads(capture_result)
    if isinstance(capture_result, dict):
        return capture_result.get('resources') or []
    return getattr(capture_result, 'resources', None) or []


def find_captured_image_uri(capture_result) -> str:
    """
    Locate the generalized image VHD URI in a VM capture result.

    The capture result is an ARM template; the image lives on the first
    resource with properties.storageProfile.osDisk.image.uri set.

    Args:
        capture_result: VirtualMachineCaptureResult, dict or JSON string

    Returns:
        The captured image URI

    Raises:
        CaptureResultError: if no resource carries an image URI
    """
    for resource in _capture_resources(capture_result):
        uri = _dig(resource, 'properties', 'storageProfile', 'osDisk', 'image', 'uri')
        if uri:
            return uri

    raise CaptureResultError(
        f"Could not locate image uri under expected section in the capture result - {_dump(capture_result)}"
    )


def _dig(data: Any, *keys: str) -> Optional[Any]:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _dump(capture_result) -> str:
    if isinstance(capture_result, str):
        return capture_result
    if hasattr(capture_result, 'as_dict'):
        capture_result = capture_result.as_dict()
    try:
        return json.dumps(capture_result)
    except TypeError:
        return str(capture_result)


def deprovision_agent_in_linux_vm(host: str, port: int, username: str, password: str,
                                  timeout: int = 60) -> str:
    """
    Deprovision the Azure Linux agent on a VM over SSH.

    Removes machine-specific identity and the provisioned user so the VM can be
    generalized afterwards.

    Returns:
        The command output

    Raises:
        DeprovisionError: if the command exits with a non-zero status
    """
    logger.info(f"🔐 Connecting to {username}@{host}:{port} to deprovision the guest agent...")
    client = paramiko.SSHClient()
    # Freshly provisioned VMs have no known host key yet
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())  # nosec B507

    try:
        client.connect(
            hostname=host,
            port=port,
            username=username,
            password=password,
            timeout=timeout,
            look_for_keys=False,
            allow_agent=False,
        )
        stdin, stdout, stderr = client.exec_command(DEPROVISION_COMMAND, timeout=timeout)
        stdin.write(f"{password}\n")
        stdin.flush()

        # Drain stdout and stderr before waiting on the exit status
        output = stdout.read().decode(errors='replace')
        errors = stderr.read().decode(errors='replace')
        exit_status = stdout.channel.recv_exit_status()
    finally:
        client.close()

    if exit_status != 0:
        raise DeprovisionError(f"waagent deprovision failed on {host} (exit {exit_status}): {errors.strip()}")

    logger.info(f"✅ Guest agent deprovisioned on {host}")
    return output
