"""Schemas shared between the Engage Hub server and its clients."""
