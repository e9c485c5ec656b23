"""pxe-fleet command-line interface (``pxe-fleet``)."""
