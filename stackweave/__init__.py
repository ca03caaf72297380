"""
stackweave - declarative resource-graph provisioning.

Declares the OData service stack (network, load balancer, container service,
database, secret, private API) as a graph of resources, checks its security
posture, and reconciles it stage by stage against a provisioning backend.
"""

__version__ = "0.1.0"
