"""Configuración y acceso a BD compartidos."""
