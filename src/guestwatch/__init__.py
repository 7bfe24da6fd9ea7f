"""guestwatch - a host-side software watchdog for virtual machine guests.

Polls a liveness token written by a feeder inside each guest through the
hypervisor's guest agent, and force-resets guests whose token stops changing.
"""

__version__ = "0.1.0"
