from .execution import ExecutionClient, PaperExecutionClient, load_execution_client
from .connection_supervisor import ConnectionSupervisor, ConnectionLostError, SubscriptionError

__all__ = [
    "ExecutionClient", "PaperExecutionClient", "load_execution_client",
    "ConnectionSupervisor", "ConnectionLostError", "SubscriptionError",
]
