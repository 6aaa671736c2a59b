"""Metric label names used by the system statistics collectors."""

# The monitored disk device, e.g. "sda", "sda1".
DEVICE_NAME_LABEL = "device_name"

# Direction of disk operations: "read" or "write".
DIRECTION_LABEL = "direction"

# State of disk/memory/cpu usage, e.g. "free", "used".
STATE_LABEL = "state"

# Filesystem type of the disk, e.g. "ext4", "vfat".
FS_TYPE_LABEL = "fs_type"

# Mount options of the monitored disk device.
MOUNT_OPTION_LABEL = "mount_option"

# Feature of the guest operating system.
FEATURE_LABEL = "os_feature"

# Value associated with a guest OS feature, where needed.
VALUE_LABEL = "value"

# Network interface name.
INTERFACE_NAME_LABEL = "interface_name"

# CPU name, e.g. "cpu0".
CPU_LABEL = "cpu"

# Kernel stage in which CPU time was spent.
STAGE_LABEL = "stage"