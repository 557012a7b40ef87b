# Copyright (c) Microsoft. All rights reserved.

import logging

from .exceptions import AgentWorkflowException

logging.basicConfig(
    format="[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

__all__ = ["get_logger"]


def get_logger(name: str = "agent_workflows") -> logging.Logger:
    """Get a logger with the specified name, defaulting to 'agent_workflows'.

    Args:
        name: The name of the logger. Must live under the 'agent_workflows' namespace.

    Returns:
        The configured logger instance.

    Raises:
        AgentWorkflowException: If the name is outside the 'agent_workflows' namespace.
    """
    if not name.startswith("agent_workflows"):
        raise AgentWorkflowException("Logger name must start with 'agent_workflows'.")
    return logging.getLogger(name)
