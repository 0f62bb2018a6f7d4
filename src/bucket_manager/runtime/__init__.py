"""Compose runtime: action sequences and status probing"""
