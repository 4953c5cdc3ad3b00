"""Provisioning of throwaway cloud resources."""
