"""
URL configuration for the music-bot project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/stable/topics/http/urls/
"""

from django.urls import path

from audio.views import audio_download_view

urlpatterns = [
    path('api/audio/download', audio_download_view, name='audio_download'),
]
