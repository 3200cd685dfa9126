"""Deployment orchestration for the Cognito + ALB authentication front-end."""

__version__ = "0.1.0"
