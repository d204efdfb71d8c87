"""
The fixed payload the probe publishes, twice: once at QoS0, once at QoS1.

Its length (1337 bytes) is deliberately not a multiple of the default
chunk size, so the last write is always a short one.
"""

PAYLOAD_TEXT = (
    "No one would have believed in the last years of the nineteenth "
    "century that this world was being watched keenly and closely by "
    "intelligences greater than man's and yet as mortal as his own; that as "
    "men busied themselves about their various concerns they were "
    "scrutinised and studied, perhaps almost as narrowly as a man with a "
    "microscope might scrutinise the transient creatures that swarm and "
    "multiply in a drop of water.  With infinite complacency men went to "
    "and fro over this globe about their little affairs, serene in their "
    "assurance of their empire over matter. It is possible that the "
    "infusoria under the microscope do the same.  No one gave a thought to "
    "the older worlds of space as sources of human danger, or thought of "
    "them only to dismiss the idea of life upon them as impossible or "
    "improbable.  It is curious to recall some of the mental habits of "
    "those departed days.  At most terrestrial men fancied there might be "
    "other men upon Mars, perhaps inferior to themselves and ready to "
    "welcome a missionary enterprise. Yet across the gulf of space, minds "
    "that are to our minds as ours are to those of the beasts that perish, "
    "intellects vast and cool and unsympathetic, regarded this earth with "
    "envious eyes, and slowly and surely drew their plans against us.  And "
    "early in the twentieth century came the great disillusionment. "
)

PAYLOAD = PAYLOAD_TEXT.encode('ascii')
PAYLOAD_LEN = 1337
