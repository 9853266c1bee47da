"""Tests for the presence package"""
