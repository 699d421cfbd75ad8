from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .supervisor import Supervisor


class Application:
    """
    The extension points an embedding application can implement.

    Subclass it and override the hooks you need, then pass an instance to the
    Supervisor. Every hook receives the Supervisor of the current process.
    Exceptions raised by a hook are not caught.
    """

    def init_master(self, supervisor: "Supervisor") -> None:
        """Called on the master once the initial workers have been forked."""

    def init_worker(self, supervisor: "Supervisor") -> None:
        """Called on a worker during init, after signals and process attributes are set."""

    def start_worker(self, supervisor: "Supervisor") -> None:
        """
        Called on a worker at the end of start. This is where the worker's
        business logic runs; it may block for the life of the process.
        """
