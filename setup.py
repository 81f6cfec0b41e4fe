#!/usr/bin/env python

# In this form, setup.py is a stub to indicate
# this repository contains a python package.
# The build is configured in pyproject.toml.

from setuptools import setup


if __name__ == "__main__":
    setup(name="firecarbon")
