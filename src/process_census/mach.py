"""Low-level Mach interface for task and thread enumeration.

Uses ctypes to call the Mach kernel APIs in libSystem directly:
- host_processor_sets / host_processor_set_priv: processor set handles
- processor_set_tasks: every task (process) in a processor set
- task_threads / thread_info: threads of a task and their run state
- mach_port_deallocate / vm_deallocate: releasing what the calls hand out

Arrays returned out-of-line by the kernel are copied into Python lists and
released with vm_deallocate before each call returns. Port rights in those
lists belong to the caller, who must release them with port_deallocate.

Any kern_return_t other than KERN_SUCCESS raises MachError.
"""

import ctypes
from ctypes import POINTER, Structure, byref, c_char_p, c_int, c_size_t, c_uint32, c_void_p
from typing import Any

import structlog

log = structlog.get_logger()

# ─────────────────────────────────────────────────────────────────────────────
# Library loading
# ─────────────────────────────────────────────────────────────────────────────

try:
    _libc = ctypes.CDLL("/usr/lib/libSystem.B.dylib", use_errno=True)
    _MACH_AVAILABLE = True
except OSError:
    _MACH_AVAILABLE = False
    _libc = None

# ─────────────────────────────────────────────────────────────────────────────
# Type aliases for readability
# ─────────────────────────────────────────────────────────────────────────────

kern_return_t = c_int
mach_port_t = c_uint32
mach_msg_type_number_t = c_uint32
natural_t = c_uint32
integer_t = c_int
vm_address_t = c_size_t
vm_size_t = c_size_t

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

KERN_SUCCESS = 0

# thread_info flavors (from mach/thread_info.h)
THREAD_BASIC_INFO = 3


# ─────────────────────────────────────────────────────────────────────────────
# Structures
# ─────────────────────────────────────────────────────────────────────────────


class TimeValue(Structure):
    """time_value_t from mach/time_value.h."""

    _fields_ = [
        ("seconds", integer_t),
        ("microseconds", integer_t),
    ]


class ThreadBasicInfo(Structure):
    """thread_basic_info from mach/thread_info.h."""

    _fields_ = [
        ("user_time", TimeValue),
        ("system_time", TimeValue),
        ("cpu_usage", integer_t),
        ("policy", integer_t),
        ("run_state", integer_t),
        ("flags", integer_t),
        ("suspend_count", integer_t),
        ("sleep_time", integer_t),
    ]


# thread_info() takes the buffer size in natural_t units
THREAD_BASIC_INFO_COUNT = ctypes.sizeof(ThreadBasicInfo) // ctypes.sizeof(natural_t)


# ─────────────────────────────────────────────────────────────────────────────
# Function signatures
# ─────────────────────────────────────────────────────────────────────────────

_PORT_ARRAY_ARGTYPES = [
    mach_port_t,
    POINTER(POINTER(mach_port_t)),
    POINTER(mach_msg_type_number_t),
]

if _MACH_AVAILABLE and _libc:
    # mach_port_t mach_host_self(void)
    _libc.mach_host_self.argtypes = []
    _libc.mach_host_self.restype = mach_port_t

    # kern_return_t host_processor_sets(host_priv_t, processor_set_name_array_t *, count *)
    _libc.host_processor_sets.argtypes = _PORT_ARRAY_ARGTYPES
    _libc.host_processor_sets.restype = kern_return_t

    # kern_return_t host_processor_set_priv(host_priv_t, processor_set_name_t, processor_set_t *)
    _libc.host_processor_set_priv.argtypes = [mach_port_t, mach_port_t, POINTER(mach_port_t)]
    _libc.host_processor_set_priv.restype = kern_return_t

    # kern_return_t processor_set_tasks(processor_set_t, task_array_t *, count *)
    _libc.processor_set_tasks.argtypes = _PORT_ARRAY_ARGTYPES
    _libc.processor_set_tasks.restype = kern_return_t

    # kern_return_t task_threads(task_t, thread_act_array_t *, count *)
    _libc.task_threads.argtypes = _PORT_ARRAY_ARGTYPES
    _libc.task_threads.restype = kern_return_t

    # kern_return_t thread_info(thread_t, thread_flavor_t, thread_info_t, count *)
    _libc.thread_info.argtypes = [
        mach_port_t,
        natural_t,
        c_void_p,
        POINTER(mach_msg_type_number_t),
    ]
    _libc.thread_info.restype = kern_return_t

    # kern_return_t mach_port_deallocate(ipc_space_t, mach_port_name_t)
    _libc.mach_port_deallocate.argtypes = [mach_port_t, mach_port_t]
    _libc.mach_port_deallocate.restype = kern_return_t

    # kern_return_t vm_deallocate(vm_map_t, vm_address_t, vm_size_t)
    _libc.vm_deallocate.argtypes = [mach_port_t, vm_address_t, vm_size_t]
    _libc.vm_deallocate.restype = kern_return_t

    # const char *mach_error_string(mach_error_t)
    _libc.mach_error_string.argtypes = [kern_return_t]
    _libc.mach_error_string.restype = c_char_p


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────


def error_string(code: int) -> str:
    """Return the kernel's description of a kern_return_t."""
    if not _MACH_AVAILABLE or not _libc:
        return f"kern_return_t {code}"
    message = _libc.mach_error_string(code)
    return message.decode("utf-8", errors="replace") if message else f"kern_return_t {code}"


class MachError(Exception):
    """A Mach call returned something other than KERN_SUCCESS."""

    def __init__(self, call: str, code: int) -> None:
        self.call = call
        self.code = code
        super().__init__(f"{call} failed: {error_string(code)}")


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


class MachKernel:
    """Handles to the host and the current task, plus the calls that use them.

    Raises:
        OSError: On construction, if the Mach interface is not available.
    """

    def __init__(self) -> None:
        if not _MACH_AVAILABLE or not _libc:
            raise OSError("Mach interface not available on this platform")
        self.host_self: int = _libc.mach_host_self()
        # mach_task_self() is a macro over this global
        self.task_self: int = mach_port_t.in_dll(_libc, "mach_task_self_").value

    def _port_array(self, call: str, func: Any, port: int) -> list[int]:
        """Call a kernel function that returns an out-of-line port array."""
        array = POINTER(mach_port_t)()
        count = mach_msg_type_number_t()
        kr = func(port, byref(array), byref(count))
        if kr != KERN_SUCCESS:
            raise MachError(call, kr)

        try:
            return [array[i] for i in range(count.value)]
        finally:
            self._vm_deallocate(array, count.value)

    def _vm_deallocate(self, array: Any, count: int) -> None:
        """Release an out-of-line array. Failure is logged, not raised."""
        if not array:
            return
        address = ctypes.cast(array, c_void_p).value
        kr = _libc.vm_deallocate(self.task_self, address, count * ctypes.sizeof(mach_port_t))
        if kr != KERN_SUCCESS:
            log.error("vm_deallocate_failed", error=error_string(kr))

    def processor_sets(self) -> list[int]:
        """List the processor set name ports of the host."""
        return self._port_array("host_processor_sets", _libc.host_processor_sets, self.host_self)

    def processor_set_priv(self, pset_name: int) -> int:
        """Exchange a processor set name port for its privileged port."""
        pset = mach_port_t()
        kr = _libc.host_processor_set_priv(self.host_self, pset_name, byref(pset))
        if kr != KERN_SUCCESS:
            raise MachError("host_processor_set_priv", kr)
        return pset.value

    def processor_set_tasks(self, pset: int) -> list[int]:
        """List the task ports of a processor set."""
        return self._port_array("processor_set_tasks", _libc.processor_set_tasks, pset)

    def task_threads(self, task: int) -> list[int]:
        """List the thread ports of a task."""
        return self._port_array("task_threads", _libc.task_threads, task)

    def thread_run_state(self, thread: int) -> int:
        """Return a thread's run_state from THREAD_BASIC_INFO."""
        info = ThreadBasicInfo()
        count = mach_msg_type_number_t(THREAD_BASIC_INFO_COUNT)
        kr = _libc.thread_info(thread, THREAD_BASIC_INFO, byref(info), byref(count))
        if kr != KERN_SUCCESS:
            raise MachError("thread_info", kr)
        return info.run_state

    def port_deallocate(self, port: int) -> None:
        """Release one port right held by the current task."""
        kr = _libc.mach_port_deallocate(self.task_self, port)
        if kr != KERN_SUCCESS:
            raise MachError("mach_port_deallocate", kr)
