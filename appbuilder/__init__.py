"""appbuilder: plan and generate applications from a natural-language request."""

__version__ = "0.1.0"
