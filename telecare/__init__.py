"""Telecare consultation lifecycle and payment settlement service"""
