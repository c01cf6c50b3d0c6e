"""jobwatch: Kubernetes batch Job monitoring agent for AppDynamics."""

__version__ = "1.0.0"
