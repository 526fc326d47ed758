"""Test suite for PayConferHub."""
