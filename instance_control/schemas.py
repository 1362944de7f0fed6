from pydantic import BaseModel, Field


class NetworkInterface(BaseModel):
    id: str
    mac_address: str
    auto_mode: bool = False


class IdMapping(BaseModel):
    host_id: int
    instance_id: int


class VMMount(BaseModel):
    source_path: str
    uid_mappings: list[IdMapping] = Field(default_factory=list)
    gid_mappings: list[IdMapping] = Field(default_factory=list)
    mount_type: str = "native"


class VirtualMachineDescription(BaseModel):
    vm_name: str = Field(min_length=1)
    num_cores: int = Field(ge=1)
    mem_size_bytes: int = Field(ge=1)
    disk_space_bytes: int = Field(ge=1)
    image_id: str
    ssh_username: str = "ubuntu"
    default_mac_address: str
    extra_interfaces: list[NetworkInterface] = Field(default_factory=list)

    # Rendered cloud-init documents, passed through as-is.
    meta_data_config: str | None = None
    vendor_data_config: str | None = None
    user_data_config: str | None = None
    network_data_config: str | None = None
