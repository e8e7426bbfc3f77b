"""camera-observer: restart SmartThings switches behind stalled Frigate cameras."""
