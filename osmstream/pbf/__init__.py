"""Reading and writing the OpenStreetMap PBF format."""