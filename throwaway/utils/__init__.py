"""Utility functions for throwaway."""
