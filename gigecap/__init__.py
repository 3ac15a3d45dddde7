"""GigE Vision discovery, register access and stream capture; TCP frame streaming;
pipeline configuration; a command queue; and raw frame conversion."""

__version__ = "0.1.0"