"""Progress & gamification service for the Play & Learn platform"""
