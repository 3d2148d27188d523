"""Appointment ledger: consultation records, status machine and emergency calls"""
