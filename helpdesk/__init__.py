"""Tiered helpdesk ticket tracker."""
