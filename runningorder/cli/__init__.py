"""
This is the CLI package for RunningOrder.

- ``rocli.py`` - Contains the ``RunningOrderCli`` class and the ``main`` entry point.

"""
