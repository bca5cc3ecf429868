"""chatrelay: streaming chat relay in front of an Azure OpenAI deployment."""

__version__ = "0.1.0"
