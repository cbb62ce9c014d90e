"""Mento Services: marketplace backend for service workers and job seekers."""

__version__ = "0.1.0"
